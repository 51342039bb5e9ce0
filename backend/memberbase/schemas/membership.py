from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

BillingCycle = Literal["monthly", "yearly"]
MembershipStatus = Literal["active", "cancelled", "expired", "trial", "past_due"]
PeriodType = Literal["none", "daily", "monthly", "lifetime"]
FeatureType = Literal["boolean", "limit", "enum"]


class TierOut(BaseModel):
    id: str
    name: str
    display_name: str
    description: str | None = None
    price_monthly: float
    price_yearly: float
    stripe_price_id_monthly: str | None = None
    stripe_price_id_yearly: str | None = None
    trial_days: int
    is_active: bool
    is_default: bool
    sort_order: int


class FeatureOut(BaseModel):
    id: str
    key: str
    name: str
    description: str | None = None
    feature_type: FeatureType
    default_value: bool | int | str | None = None
    is_active: bool


class TierFeatureOut(BaseModel):
    feature_id: str
    key: str
    name: str
    description: str | None = None
    feature_type: FeatureType
    value: bool | int | str
    usage_limit: int | None = None
    period_type: PeriodType


class PublicTierOut(TierOut):
    features: list[TierFeatureOut]


class MembershipOut(BaseModel):
    id: str
    user_id: str
    tier_id: str
    tier_name: str
    tier_display_name: str
    status: MembershipStatus
    billing_cycle: BillingCycle | None = None
    started_at: datetime
    expires_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancel_at_period_end: bool
    trial_starts_at: datetime | None = None
    trial_ends_at: datetime | None = None
    has_used_trial: bool
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    last_payment_at: datetime | None = None
    last_payment_amount: float | None = None
    last_payment_currency: str | None = None


class TierWithFeaturesOut(BaseModel):
    tier_id: str
    tier_name: str
    tier_display_name: str
    membership_status: MembershipStatus
    trial_ends_at: datetime | None = None
    features: dict[str, bool | int | str]


class FeatureCheckOut(BaseModel):
    feature_key: str
    has_feature: bool


class FeatureLimitOut(BaseModel):
    feature_key: str
    limit: int


class TrialStatusOut(BaseModel):
    is_on_trial: bool
    trial_starts_at: datetime | None = None
    trial_ends_at: datetime | None = None
    days_remaining: int
    has_used_trial: bool
    can_start_trial: bool
    is_expired: bool


class TrialConvertIn(BaseModel):
    tier_id: str = Field(..., min_length=1)
    billing_cycle: BillingCycle = "monthly"


class ChangeTierIn(BaseModel):
    tier_id: str = Field(..., min_length=1)
    billing_cycle: BillingCycle = "monthly"


class FeatureUsageOut(BaseModel):
    feature_key: str
    current_usage: int
    usage_limit: int
    remaining: int
    is_exceeded: bool
    percentage_used: int | None = None
    period_type: PeriodType
    period_start: datetime | None = None
    period_end: datetime | None = None


class UsageSummaryOut(BaseModel):
    tier_name: str | None = None
    features: list[FeatureUsageOut]
