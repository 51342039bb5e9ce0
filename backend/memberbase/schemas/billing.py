from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from memberbase.schemas.membership import BillingCycle


class CheckoutSessionIn(BaseModel):
    tier_id: str = Field(..., min_length=1)
    billing_cycle: BillingCycle = "monthly"
    success_url: str | None = Field(default=None, max_length=2048)
    cancel_url: str | None = Field(default=None, max_length=2048)


class CheckoutSessionOut(BaseModel):
    checkout_url: str


class PortalSessionIn(BaseModel):
    return_url: str | None = Field(default=None, max_length=2048)


class PortalSessionOut(BaseModel):
    portal_url: str


class PaymentOut(BaseModel):
    id: str
    amount: float
    currency: str
    status: Literal["pending", "succeeded", "failed", "refunded", "partially_refunded"]
    description: str | None = None
    failure_reason: str | None = None
    invoice_url: str | None = None
    invoice_pdf: str | None = None
    stripe_invoice_id: str | None = None
    stripe_subscription_id: str | None = None
    paid_at: datetime | None = None
    created_at: datetime


class SubscriptionOut(BaseModel):
    id: str
    status: str
    cancel_at_period_end: bool
    current_period_end: datetime | None = None


class WebhookAckOut(BaseModel):
    received: bool = True
    event_id: str
    duplicate: bool
    processed: bool
