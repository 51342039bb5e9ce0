import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from memberbase.db.base import Base


class UsageTracking(Base):
    __tablename__ = "usage_tracking"

    id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()"))
    user_id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, sa.ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False)
    feature_key: Mapped[str] = mapped_column(sa.Text, nullable=False)
    current_usage: Mapped[int] = mapped_column(sa.Integer, nullable=False, server_default="0")
    # -1 means unlimited
    usage_limit: Mapped[int] = mapped_column(sa.Integer, nullable=False, server_default="0")
    period_type: Mapped[str] = mapped_column(sa.Text, nullable=False, server_default="lifetime")
    period_start: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True, server_default=sa.text("now()"))
    period_end: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    last_used_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    created_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))
    updated_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))

    __table_args__ = (
        sa.CheckConstraint("current_usage >= 0", name="ck_usage_tracking_current_usage"),
        sa.CheckConstraint("period_type IN ('none','daily','monthly','lifetime')", name="ck_usage_tracking_period_type"),
        sa.UniqueConstraint("user_id", "feature_key", name="uq_usage_tracking_user_feature"),
        sa.Index("ix_usage_tracking_period_end", "period_end", postgresql_where=sa.text("period_end IS NOT NULL")),
    )
