"""Membership/tier directory: reference data reads plus the membership writes
shared by the trial state machine, the billing reconciler and admin overrides."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from memberbase.core.config import settings
from memberbase.core.errors import NotFoundError, StateConflictError, UpstreamError, ValidationError
from memberbase.core.security import now_utc
from memberbase.db.repositories import SystemRepo, UserScopedRepo
from memberbase.services.audit import audit_membership_change
from memberbase.services.feature_values import FeatureValue, LimitValue, grants_access, parse_feature_value

logger = logging.getLogger(__name__)

ACCESS_STATUSES = {"active", "trial"}
BILLING_CYCLES = {"monthly", "yearly"}


@dataclass(frozen=True)
class TierWithFeatures:
    tier_id: str
    tier_name: str
    tier_display_name: str
    membership_status: str
    trial_ends_at: datetime | None
    features: dict[str, FeatureValue] = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {
            "tier_id": self.tier_id,
            "tier_name": self.tier_name,
            "tier_display_name": self.tier_display_name,
            "membership_status": self.membership_status,
            "trial_ends_at": self.trial_ends_at,
            "features": {k: v.to_json() for k, v in self.features.items()},
        }


def resolve_binding(row: dict) -> dict:
    value = parse_feature_value(row["feature_type"], row["value"])
    out = dict(row)
    out["value"] = value.to_json()
    out["usage_limit"] = value.limit if isinstance(value, LimitValue) else None
    return out


class TierDirectory:
    def __init__(self, repo: SystemRepo, clock=now_utc):
        self.repo = repo
        self.clock = clock

    def get_tiers(self, reader: UserScopedRepo | None = None) -> list[dict]:
        return (reader or self.repo).list_tiers()

    def get_tier_by_id(self, tier_id: str) -> dict | None:
        return self.repo.get_tier(tier_id)

    def get_tier_by_name(self, name: str) -> dict | None:
        return self.repo.get_tier_by_name(name)

    def get_tier_features(self, tier_id: str, reader: UserScopedRepo | None = None) -> list[dict]:
        return [resolve_binding(r) for r in (reader or self.repo).list_tier_features(tier_id)]

    def get_all_features(self) -> list[dict]:
        return self.repo.list_features()

    def get_public_catalog(self) -> list[dict]:
        out = []
        for tier in self.repo.list_tiers():
            out.append({**tier, "features": self.get_tier_features(tier["id"])})
        return out

    def get_user_membership(self, user_id: str, reader: UserScopedRepo | None = None) -> dict | None:
        return (reader or self.repo).get_membership(user_id)

    def require_membership(self, user_id: str) -> dict:
        membership = self.repo.get_membership(user_id)
        if not membership:
            raise NotFoundError("Membership not found")
        return membership

    def ensure_membership(self, user_id: str, email: str) -> dict:
        existing = self.repo.get_membership(user_id)
        if existing:
            return existing
        self.repo.ensure_profile(user_id, email)
        tier = self.repo.get_default_tier() or self.repo.get_tier_by_name(settings.FREE_TIER_NAME)
        if not tier:
            raise UpstreamError("No default tier configured")
        membership = self.repo.create_membership(user_id, tier["id"])
        logger.info("membership provisioned user=%s tier=%s", user_id, tier["name"])
        return membership

    def get_user_tier_with_features(self, user_id: str) -> TierWithFeatures | None:
        row = self.repo.get_tier_with_features(user_id)
        if not row:
            return None
        features = {}
        for key, entry in (row.get("features") or {}).items():
            try:
                features[key] = parse_feature_value(entry["type"], entry["value"])
            except (KeyError, TypeError, ValueError):
                logger.warning("skipping malformed feature binding key=%s user=%s", key, user_id)
        return TierWithFeatures(
            tier_id=row["tier_id"],
            tier_name=row["tier_name"],
            tier_display_name=row["tier_display_name"],
            membership_status=row["membership_status"],
            trial_ends_at=row.get("trial_ends_at"),
            features=features,
        )

    def user_has_feature(self, user_id: str, feature_key: str) -> bool:
        twf = self.get_user_tier_with_features(user_id)
        if not twf or twf.membership_status not in ACCESS_STATUSES:
            return False
        return grants_access(twf.features.get(feature_key))

    def get_feature_limit(self, user_id: str, feature_key: str) -> int:
        return self.repo.get_feature_limit(user_id, feature_key)

    def update_membership(self, user_id: str, values: dict, audit_data: dict | None = None) -> dict:
        before = self.require_membership(user_id)
        after = self.repo.update_membership(user_id, values)
        if not after:
            raise NotFoundError("Membership not found")
        audit_membership_change(self.repo, before, after, audit_data)
        return after

    def change_tier(self, user_id: str, tier_id: str, billing_cycle: str = "monthly", source: str = "admin") -> dict:
        if billing_cycle not in BILLING_CYCLES:
            raise ValidationError("billing_cycle must be monthly or yearly")
        tier = self.repo.get_tier(tier_id)
        if not tier:
            raise NotFoundError("Tier not found")
        if not tier["is_active"]:
            raise StateConflictError("Tier is not active")
        return self.update_membership(
            user_id,
            {
                "tier_id": tier_id,
                "status": "active",
                "billing_cycle": billing_cycle,
                "started_at": self.clock(),
                "trial_ends_at": None,
                "stripe_subscription_id": None,
                "stripe_price_id": None,
                "current_period_start": None,
                "current_period_end": None,
                "cancel_at_period_end": False,
            },
            {"source": source},
        )

    def upgrade_membership(
        self,
        user_id: str,
        tier_id: str,
        billing_cycle: str,
        *,
        stripe_subscription_id: str | None = None,
        stripe_price_id: str | None = None,
        current_period_start: datetime | None = None,
        current_period_end: datetime | None = None,
    ) -> dict:
        values = {
            "tier_id": tier_id,
            "status": "active",
            "billing_cycle": billing_cycle,
            "started_at": self.clock(),
            "cancel_at_period_end": False,
            "cancelled_at": None,
        }
        if stripe_subscription_id:
            values["stripe_subscription_id"] = stripe_subscription_id
        if stripe_price_id:
            values["stripe_price_id"] = stripe_price_id
        if current_period_start:
            values["current_period_start"] = current_period_start
        if current_period_end:
            values["current_period_end"] = current_period_end
        return self.update_membership(user_id, values, {"source": "billing"})
