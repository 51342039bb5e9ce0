"""contact submissions, profile deletion

Revision ID: 0002_profiles_contact
Revises: 0001_membership_core
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

revision = "0002_profiles_contact"
down_revision = "0001_membership_core"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "contact_submissions",
        sa.Column("id", sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("first_name", sa.Text, nullable=False),
        sa.Column("last_name", sa.Text, nullable=False),
        sa.Column("email", sa.Text, nullable=False),
        sa.Column("subject", sa.Text, nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("ip_address", sa.Text, nullable=True),
        sa.Column("user_agent", sa.Text, nullable=True),
        sa.Column("status", sa.Text, nullable=False, server_default="new"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("status IN ('new','read','replied','archived')", name="ck_contact_submissions_status"),
    )
    op.create_index("ix_contact_submissions_created_at", "contact_submissions", ["created_at"])
    # written by the service role only
    op.execute("ALTER TABLE contact_submissions ENABLE ROW LEVEL SECURITY")

    # deleting a profile keeps the admins it granted
    op.drop_constraint("admin_users_created_by_fkey", "admin_users", type_="foreignkey")
    op.create_foreign_key(
        "admin_users_created_by_fkey",
        "admin_users",
        "user_profiles",
        ["created_by"],
        ["id"],
        ondelete="SET NULL",
    )


def downgrade():
    op.drop_constraint("admin_users_created_by_fkey", "admin_users", type_="foreignkey")
    op.create_foreign_key("admin_users_created_by_fkey", "admin_users", "user_profiles", ["created_by"], ["id"])
    op.drop_index("ix_contact_submissions_created_at", table_name="contact_submissions")
    op.drop_table("contact_submissions")
