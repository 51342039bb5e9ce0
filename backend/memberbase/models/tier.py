import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from memberbase.db.base import Base


class MembershipTier(Base):
    __tablename__ = "membership_tiers"

    id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()"))
    name: Mapped[str] = mapped_column(sa.Text, nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(sa.Text, nullable=False)
    description: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    price_monthly: Mapped[float] = mapped_column(sa.Numeric(10, 2), nullable=False, server_default="0")
    price_yearly: Mapped[float] = mapped_column(sa.Numeric(10, 2), nullable=False, server_default="0")
    stripe_price_id_monthly: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    stripe_price_id_yearly: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    stripe_product_id: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    trial_days: Mapped[int] = mapped_column(sa.Integer, nullable=False, server_default="0")
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, server_default=sa.text("true"))
    is_default: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, server_default=sa.text("false"))
    sort_order: Mapped[int] = mapped_column(sa.Integer, nullable=False, server_default="0")
    created_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))
    updated_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))

    __table_args__ = (
        sa.Index("ix_membership_tiers_active_sort", "is_active", "sort_order"),
    )


class Feature(Base):
    __tablename__ = "features"

    id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()"))
    key: Mapped[str] = mapped_column(sa.Text, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(sa.Text, nullable=False)
    description: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    feature_type: Mapped[str] = mapped_column(sa.Text, nullable=False)
    default_value: Mapped[dict] = mapped_column(JSONB, nullable=False, server_default=sa.text("'false'::jsonb"))
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, server_default=sa.text("true"))
    created_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))

    __table_args__ = (
        sa.CheckConstraint("feature_type IN ('boolean','limit','enum')", name="ck_features_type"),
    )


class TierFeature(Base):
    __tablename__ = "tier_features"

    id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()"))
    tier_id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, sa.ForeignKey("membership_tiers.id", ondelete="CASCADE"), nullable=False)
    feature_id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, sa.ForeignKey("features.id", ondelete="CASCADE"), nullable=False)
    # "true" / "10" / "advanced"; limit features read their usage_limit from here
    value: Mapped[dict] = mapped_column(JSONB, nullable=False)
    period_type: Mapped[str] = mapped_column(sa.Text, nullable=False, server_default="none")
    created_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))

    __table_args__ = (
        sa.CheckConstraint("period_type IN ('none','daily','monthly','lifetime')", name="ck_tier_features_period_type"),
        sa.UniqueConstraint("tier_id", "feature_id", name="uq_tier_features_tier_feature"),
        sa.Index("ix_tier_features_feature", "feature_id"),
    )
