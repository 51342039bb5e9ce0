"""membership core schema

Revision ID: 0001_membership_core
Revises: 
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision = "0001_membership_core"
down_revision = None
branch_labels = None
depends_on = None

UPDATED_AT_TABLES = ("user_profiles", "membership_tiers", "memberships", "usage_tracking")


def upgrade():
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    # user_profiles (id is the auth provider's user id)
    op.create_table(
        "user_profiles",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("email", sa.Text, nullable=False),
        sa.Column("first_name", sa.Text, nullable=True),
        sa.Column("last_name", sa.Text, nullable=True),
        sa.Column("stripe_customer_id", sa.Text, nullable=True, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_user_profiles_email", "user_profiles", ["email"])

    # membership_tiers
    op.create_table(
        "membership_tiers",
        sa.Column("id", sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("name", sa.Text, nullable=False, unique=True),
        sa.Column("display_name", sa.Text, nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("price_monthly", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("price_yearly", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("stripe_price_id_monthly", sa.Text, nullable=True),
        sa.Column("stripe_price_id_yearly", sa.Text, nullable=True),
        sa.Column("stripe_product_id", sa.Text, nullable=True),
        sa.Column("trial_days", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.text("true")),
        sa.Column("is_default", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("sort_order", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_membership_tiers_active_sort", "membership_tiers", ["is_active", "sort_order"])

    # features
    op.create_table(
        "features",
        sa.Column("id", sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("key", sa.Text, nullable=False, unique=True),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("feature_type", sa.Text, nullable=False),
        sa.Column("default_value", JSONB, nullable=False, server_default=sa.text("'false'::jsonb")),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("feature_type IN ('boolean','limit','enum')", name="ck_features_type"),
    )

    # tier_features
    op.create_table(
        "tier_features",
        sa.Column("id", sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tier_id", sa.Uuid, sa.ForeignKey("membership_tiers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("feature_id", sa.Uuid, sa.ForeignKey("features.id", ondelete="CASCADE"), nullable=False),
        sa.Column("value", JSONB, nullable=False),
        sa.Column("period_type", sa.Text, nullable=False, server_default="none"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("period_type IN ('none','daily','monthly','lifetime')", name="ck_tier_features_period_type"),
        sa.UniqueConstraint("tier_id", "feature_id", name="uq_tier_features_tier_feature"),
    )
    op.create_index("ix_tier_features_feature", "tier_features", ["feature_id"])

    # memberships (one per user)
    op.create_table(
        "memberships",
        sa.Column("id", sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("user_id", sa.Uuid, sa.ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("tier_id", sa.Uuid, sa.ForeignKey("membership_tiers.id"), nullable=False),
        sa.Column("status", sa.Text, nullable=False, server_default="active"),
        sa.Column("billing_cycle", sa.Text, nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_at_period_end", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("trial_starts_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trial_ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("has_used_trial", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("stripe_subscription_id", sa.Text, nullable=True, unique=True),
        sa.Column("stripe_price_id", sa.Text, nullable=True),
        sa.Column("stripe_latest_invoice_id", sa.Text, nullable=True),
        sa.Column("stripe_latest_invoice_status", sa.Text, nullable=True),
        sa.Column("last_payment_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_payment_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("last_payment_currency", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "status IN ('active','cancelled','expired','trial','past_due')",
            name="ck_memberships_status",
        ),
        sa.CheckConstraint("billing_cycle IS NULL OR billing_cycle IN ('monthly','yearly')", name="ck_memberships_billing_cycle"),
    )
    op.create_index("ix_memberships_tier", "memberships", ["tier_id"])
    op.create_index("ix_memberships_status_trial_end", "memberships", ["status", "trial_ends_at"])

    # membership_audit_log
    op.create_table(
        "membership_audit_log",
        sa.Column("id", sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("membership_id", sa.Uuid, sa.ForeignKey("memberships.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Uuid, sa.ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("action", sa.Text, nullable=False),
        sa.Column("old_tier_id", sa.Uuid, sa.ForeignKey("membership_tiers.id"), nullable=True),
        sa.Column("new_tier_id", sa.Uuid, sa.ForeignKey("membership_tiers.id"), nullable=True),
        sa.Column("old_status", sa.Text, nullable=True),
        sa.Column("new_status", sa.Text, nullable=True),
        sa.Column("data", JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_membership_audit_user_created", "membership_audit_log", ["user_id", sa.text("created_at DESC")])

    # usage_tracking
    op.create_table(
        "usage_tracking",
        sa.Column("id", sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("user_id", sa.Uuid, sa.ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("feature_key", sa.Text, nullable=False),
        sa.Column("current_usage", sa.Integer, nullable=False, server_default="0"),
        sa.Column("usage_limit", sa.Integer, nullable=False, server_default="0"),
        sa.Column("period_type", sa.Text, nullable=False, server_default="lifetime"),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("now()")),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("current_usage >= 0", name="ck_usage_tracking_current_usage"),
        sa.CheckConstraint("period_type IN ('none','daily','monthly','lifetime')", name="ck_usage_tracking_period_type"),
        sa.UniqueConstraint("user_id", "feature_key", name="uq_usage_tracking_user_feature"),
    )
    op.create_index(
        "ix_usage_tracking_period_end",
        "usage_tracking",
        ["period_end"],
        postgresql_where=sa.text("period_end IS NOT NULL"),
    )

    # payment_history
    op.create_table(
        "payment_history",
        sa.Column("id", sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("user_id", sa.Uuid, sa.ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("membership_id", sa.Uuid, sa.ForeignKey("memberships.id", ondelete="SET NULL"), nullable=True),
        sa.Column("stripe_payment_intent_id", sa.Text, nullable=True, unique=True),
        sa.Column("stripe_invoice_id", sa.Text, nullable=True),
        sa.Column("stripe_charge_id", sa.Text, nullable=True),
        sa.Column("stripe_subscription_id", sa.Text, nullable=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.Text, nullable=False, server_default="usd"),
        sa.Column("status", sa.Text, nullable=False),
        sa.Column("invoice_url", sa.Text, nullable=True),
        sa.Column("invoice_pdf", sa.Text, nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("failure_reason", sa.Text, nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "status IN ('pending','succeeded','failed','refunded','partially_refunded')",
            name="ck_payment_history_status",
        ),
    )
    op.create_index("ix_payment_history_user_created", "payment_history", ["user_id", sa.text("created_at DESC")])

    # billing_webhook_events (idempotency log, keyed by provider event id)
    op.create_table(
        "billing_webhook_events",
        sa.Column("id", sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("stripe_event_id", sa.Text, nullable=False, unique=True),
        sa.Column("event_type", sa.Text, nullable=False),
        sa.Column("payload", JSONB, nullable=False),
        sa.Column("processed", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("retry_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_billing_webhook_events_type", "billing_webhook_events", ["event_type"])
    op.create_index("ix_billing_webhook_events_processed", "billing_webhook_events", ["processed"])

    # admin_users
    op.create_table(
        "admin_users",
        sa.Column("id", sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("user_id", sa.Uuid, sa.ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("role", sa.Text, nullable=False, server_default="admin"),
        sa.Column("created_by", sa.Uuid, sa.ForeignKey("user_profiles.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("role IN ('admin','super_admin')", name="ck_admin_users_role"),
    )

    # updated_at
    op.execute(
        """
        CREATE OR REPLACE FUNCTION set_updated_at()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = now();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
        """
    )
    for table in UPDATED_AT_TABLES:
        op.execute(
            f"""
            CREATE TRIGGER trg_{table}_updated_at
            BEFORE UPDATE ON {table}
            FOR EACH ROW EXECUTE FUNCTION set_updated_at();
            """
        )

    # feature lookups; features come back as {key: {"type", "value"}}
    op.execute(
        """
        CREATE OR REPLACE FUNCTION get_user_tier_with_features(p_user_id uuid)
        RETURNS TABLE (
            tier_id uuid,
            tier_name text,
            tier_display_name text,
            membership_status text,
            trial_ends_at timestamptz,
            features jsonb
        ) AS $$
            SELECT
                t.id,
                t.name,
                t.display_name,
                m.status,
                m.trial_ends_at,
                COALESCE(
                    jsonb_object_agg(f.key, jsonb_build_object('type', f.feature_type, 'value', tf.value))
                        FILTER (WHERE f.key IS NOT NULL),
                    '{}'::jsonb
                )
            FROM memberships m
            JOIN membership_tiers t ON t.id = m.tier_id
            LEFT JOIN tier_features tf ON tf.tier_id = t.id
            LEFT JOIN features f ON f.id = tf.feature_id AND f.is_active
            WHERE m.user_id = p_user_id
            GROUP BY t.id, t.name, t.display_name, m.status, m.trial_ends_at;
        $$ LANGUAGE sql STABLE;
        """
    )
    op.execute(
        """
        CREATE OR REPLACE FUNCTION get_feature_limit(p_user_id uuid, p_feature_key text)
        RETURNS integer AS $$
        DECLARE
            feature_val jsonb;
        BEGIN
            SELECT tf.value INTO feature_val
            FROM memberships m
            JOIN tier_features tf ON tf.tier_id = m.tier_id
            JOIN features f ON f.id = tf.feature_id
            WHERE m.user_id = p_user_id
              AND f.key = p_feature_key
              AND m.status IN ('active', 'trial');

            IF feature_val IS NULL THEN
                RETURN 0;
            END IF;
            RETURN (feature_val #>> '{}')::integer;
        EXCEPTION WHEN OTHERS THEN
            RETURN 0;
        END;
        $$ LANGUAGE plpgsql STABLE;
        """
    )

    # row-level security for reads made under the end-user role
    op.execute(
        """
        DO $$
        BEGIN
            IF NOT EXISTS (SELECT 1 FROM pg_roles WHERE rolname = 'authenticated') THEN
                CREATE ROLE authenticated NOLOGIN;
            END IF;
        END
        $$;
        """
    )
    op.execute(
        """
        CREATE OR REPLACE FUNCTION request_user_id()
        RETURNS uuid AS $$
            SELECT NULLIF(current_setting('request.jwt.claims', true)::jsonb ->> 'sub', '')::uuid;
        $$ LANGUAGE sql STABLE;
        """
    )
    op.execute("GRANT USAGE ON SCHEMA public TO authenticated")
    op.execute(
        "GRANT SELECT ON membership_tiers, features, tier_features, memberships, usage_tracking, payment_history TO authenticated"
    )
    for table in ("membership_tiers", "features", "tier_features", "memberships", "usage_tracking", "payment_history"):
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
    op.execute("CREATE POLICY tiers_read_active ON membership_tiers FOR SELECT TO authenticated USING (is_active)")
    op.execute("CREATE POLICY features_read_active ON features FOR SELECT TO authenticated USING (is_active)")
    op.execute("CREATE POLICY tier_features_read ON tier_features FOR SELECT TO authenticated USING (true)")
    op.execute("CREATE POLICY memberships_read_own ON memberships FOR SELECT TO authenticated USING (user_id = request_user_id())")
    op.execute("CREATE POLICY usage_read_own ON usage_tracking FOR SELECT TO authenticated USING (user_id = request_user_id())")
    op.execute("CREATE POLICY payments_read_own ON payment_history FOR SELECT TO authenticated USING (user_id = request_user_id())")

    # seed tiers and features
    op.execute(
        """
        INSERT INTO membership_tiers (name, display_name, description, price_monthly, price_yearly, trial_days, is_default, sort_order)
        VALUES
            ('trial', 'Trial', 'Full access for a limited time', 0, 0, 14, false, 1),
            ('free', 'Free', 'Basic access for everyone', 0, 0, 0, true, 2),
            ('premium', 'Premium', 'For growing teams', 29.00, 290.00, 0, false, 3),
            ('pro', 'Pro', 'Everything, without limits', 79.00, 790.00, 0, false, 4)
        ON CONFLICT (name) DO NOTHING;
        """
    )
    op.execute(
        """
        INSERT INTO features (key, name, description, feature_type, default_value)
        VALUES
            ('ai_assistant', 'AI Assistant', 'AI-powered assistant', 'boolean', 'false'::jsonb),
            ('team_collaboration', 'Team Collaboration', 'Number of team members', 'limit', '1'::jsonb),
            ('analytics_dashboard', 'Analytics Dashboard', 'Usage analytics and reports', 'boolean', 'false'::jsonb),
            ('api_integrations', 'API Integrations', 'Number of API integration calls', 'limit', '0'::jsonb),
            ('cloud_storage', 'Cloud Storage', 'Storage in megabytes', 'limit', '100'::jsonb)
        ON CONFLICT (key) DO NOTHING;
        """
    )
    op.execute(
        """
        INSERT INTO tier_features (tier_id, feature_id, value, period_type)
        SELECT t.id, f.id, v.value::jsonb, v.period_type
        FROM (
            VALUES
                ('trial', 'ai_assistant', 'true', 'none'),
                ('trial', 'team_collaboration', '10', 'lifetime'),
                ('trial', 'analytics_dashboard', 'true', 'none'),
                ('trial', 'api_integrations', '100', 'lifetime'),
                ('trial', 'cloud_storage', '10000', 'lifetime'),
                ('free', 'ai_assistant', 'false', 'none'),
                ('free', 'team_collaboration', '1', 'lifetime'),
                ('free', 'analytics_dashboard', 'false', 'none'),
                ('free', 'api_integrations', '0', 'lifetime'),
                ('free', 'cloud_storage', '500', 'lifetime'),
                ('premium', 'ai_assistant', 'true', 'none'),
                ('premium', 'team_collaboration', '5', 'lifetime'),
                ('premium', 'analytics_dashboard', 'true', 'none'),
                ('premium', 'api_integrations', '10', 'lifetime'),
                ('premium', 'cloud_storage', '5000', 'lifetime'),
                ('pro', 'ai_assistant', 'true', 'none'),
                ('pro', 'team_collaboration', '-1', 'lifetime'),
                ('pro', 'analytics_dashboard', 'true', 'none'),
                ('pro', 'api_integrations', '-1', 'lifetime'),
                ('pro', 'cloud_storage', '50000', 'lifetime')
        ) AS v(tier_name, feature_key, value, period_type)
        JOIN membership_tiers t ON t.name = v.tier_name
        JOIN features f ON f.key = v.feature_key
        ON CONFLICT (tier_id, feature_id) DO NOTHING;
        """
    )


def downgrade():
    for fn in (
        "get_feature_limit(uuid, text)",
        "get_user_tier_with_features(uuid)",
        "request_user_id()",
    ):
        op.execute(f"DROP FUNCTION IF EXISTS {fn}")
    for table in (
        "admin_users",
        "billing_webhook_events",
        "payment_history",
        "usage_tracking",
        "membership_audit_log",
        "memberships",
        "tier_features",
        "features",
        "membership_tiers",
        "user_profiles",
    ):
        op.drop_table(table)
    op.execute("DROP FUNCTION IF EXISTS set_updated_at()")
