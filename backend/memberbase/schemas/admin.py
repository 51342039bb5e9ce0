from typing import Literal

from pydantic import BaseModel, Field

from memberbase.schemas.membership import BillingCycle, FeatureType, PeriodType


class TierCreateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=64, pattern=r"^[a-z0-9_]+$")
    display_name: str = Field(..., min_length=1, max_length=128)
    description: str | None = Field(default=None, max_length=2000)
    price_monthly: float = Field(default=0, ge=0)
    price_yearly: float = Field(default=0, ge=0)
    stripe_price_id_monthly: str | None = None
    stripe_price_id_yearly: str | None = None
    stripe_product_id: str | None = None
    trial_days: int = Field(default=0, ge=0)
    is_default: bool = False
    sort_order: int = 0


class TierUpdateIn(BaseModel):
    display_name: str | None = Field(default=None, min_length=1, max_length=128)
    description: str | None = Field(default=None, max_length=2000)
    price_monthly: float | None = Field(default=None, ge=0)
    price_yearly: float | None = Field(default=None, ge=0)
    stripe_price_id_monthly: str | None = None
    stripe_price_id_yearly: str | None = None
    stripe_product_id: str | None = None
    trial_days: int | None = Field(default=None, ge=0)
    is_active: bool | None = None
    is_default: bool | None = None
    sort_order: int | None = None


class FeatureCreateIn(BaseModel):
    key: str = Field(..., min_length=1, max_length=64, pattern=r"^[a-z0-9_]+$")
    name: str = Field(..., min_length=1, max_length=128)
    description: str | None = Field(default=None, max_length=2000)
    feature_type: FeatureType
    default_value: bool | int | str = False


class FeatureUpdateIn(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=128)
    description: str | None = Field(default=None, max_length=2000)
    default_value: bool | int | str | None = None
    is_active: bool | None = None


class TierFeatureIn(BaseModel):
    value: bool | int | str
    period_type: PeriodType | None = None


class UserTierOverrideIn(BaseModel):
    tier_id: str = Field(..., min_length=1)
    billing_cycle: BillingCycle = "monthly"


class AdminOut(BaseModel):
    user_id: str
    email: str
    role: str


class AdminCreateIn(BaseModel):
    user_id: str = Field(..., min_length=1)
    role: Literal["admin", "super_admin"] = "admin"


class ExpireTrialsOut(BaseModel):
    expired: int
    errors: int


class ResetUsageOut(BaseModel):
    reset: int
