import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from memberbase.db.base import Base

MEMBERSHIP_STATUSES = ("active", "cancelled", "expired", "trial", "past_due")


class UserProfile(Base):
    __tablename__ = "user_profiles"

    # Same id as the auth provider's user
    id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, primary_key=True)
    email: Mapped[str] = mapped_column(sa.Text, nullable=False)
    first_name: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    last_name: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(sa.Text, nullable=True, unique=True)
    created_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))
    updated_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))

    __table_args__ = (
        sa.Index("ix_user_profiles_email", "email"),
    )


class Membership(Base):
    __tablename__ = "memberships"

    id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()"))
    user_id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, sa.ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False, unique=True)
    tier_id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, sa.ForeignKey("membership_tiers.id"), nullable=False)
    status: Mapped[str] = mapped_column(sa.Text, nullable=False, server_default="active")
    billing_cycle: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    started_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))
    expires_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    cancel_at_period_end: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, server_default=sa.text("false"))
    trial_starts_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    trial_ends_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    # Never reset once true: one trial per user lifetime
    has_used_trial: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, server_default=sa.text("false"))
    current_period_start: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    current_period_end: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(sa.Text, nullable=True, unique=True)
    stripe_price_id: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    stripe_latest_invoice_id: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    stripe_latest_invoice_status: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    last_payment_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    last_payment_amount: Mapped[float | None] = mapped_column(sa.Numeric(10, 2), nullable=True)
    last_payment_currency: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    created_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))
    updated_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))

    __table_args__ = (
        sa.CheckConstraint(
            "status IN ('active','cancelled','expired','trial','past_due')",
            name="ck_memberships_status",
        ),
        sa.CheckConstraint("billing_cycle IS NULL OR billing_cycle IN ('monthly','yearly')", name="ck_memberships_billing_cycle"),
        sa.Index("ix_memberships_tier", "tier_id"),
        sa.Index("ix_memberships_status_trial_end", "status", "trial_ends_at"),
    )


class MembershipAuditLog(Base):
    __tablename__ = "membership_audit_log"

    id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()"))
    membership_id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, sa.ForeignKey("memberships.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, sa.ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False)
    action: Mapped[str] = mapped_column(sa.Text, nullable=False)
    old_tier_id: Mapped[sa.Uuid | None] = mapped_column(sa.Uuid, sa.ForeignKey("membership_tiers.id"), nullable=True)
    new_tier_id: Mapped[sa.Uuid | None] = mapped_column(sa.Uuid, sa.ForeignKey("membership_tiers.id"), nullable=True)
    old_status: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    new_status: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    data: Mapped[dict] = mapped_column(JSONB, nullable=False, server_default=sa.text("'{}'::jsonb"))
    created_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))

    __table_args__ = (
        sa.Index("ix_membership_audit_user_created", "user_id", sa.text("created_at DESC")),
    )


class AdminUser(Base):
    __tablename__ = "admin_users"

    id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()"))
    user_id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, sa.ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(sa.Text, nullable=False, server_default="admin")
    created_by: Mapped[sa.Uuid | None] = mapped_column(sa.Uuid, sa.ForeignKey("user_profiles.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))

    __table_args__ = (
        sa.CheckConstraint("role IN ('admin','super_admin')", name="ck_admin_users_role"),
    )
