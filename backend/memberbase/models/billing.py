import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from memberbase.db.base import Base


class PaymentHistory(Base):
    __tablename__ = "payment_history"

    id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()"))
    user_id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, sa.ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False)
    membership_id: Mapped[sa.Uuid | None] = mapped_column(sa.Uuid, sa.ForeignKey("memberships.id", ondelete="SET NULL"), nullable=True)
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(sa.Text, nullable=True, unique=True)
    stripe_invoice_id: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    stripe_charge_id: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    amount: Mapped[float] = mapped_column(sa.Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(sa.Text, nullable=False, server_default="usd")
    status: Mapped[str] = mapped_column(sa.Text, nullable=False)
    invoice_url: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    invoice_pdf: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    description: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    paid_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    created_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))

    __table_args__ = (
        sa.CheckConstraint(
            "status IN ('pending','succeeded','failed','refunded','partially_refunded')",
            name="ck_payment_history_status",
        ),
        sa.Index("ix_payment_history_user_created", "user_id", sa.text("created_at DESC")),
    )


class BillingWebhookEvent(Base):
    __tablename__ = "billing_webhook_events"

    id: Mapped[sa.Uuid] = mapped_column(sa.Uuid, primary_key=True, server_default=sa.text("gen_random_uuid()"))
    stripe_event_id: Mapped[str] = mapped_column(sa.Text, nullable=False, unique=True)
    event_type: Mapped[str] = mapped_column(sa.Text, nullable=False)
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False)
    processed: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, server_default=sa.text("false"))
    processed_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(sa.Integer, nullable=False, server_default="0")
    created_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))

    __table_args__ = (
        sa.Index("ix_billing_webhook_events_type", "event_type"),
        sa.Index("ix_billing_webhook_events_processed", "processed"),
    )
