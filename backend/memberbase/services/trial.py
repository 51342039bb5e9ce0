"""Trial state machine.

eligible -> on_trial -> (trial_expired_pending) -> lapsed, or on_trial -> converted.
Status reads never mutate; expiry happens through explicit conditional updates
so that concurrent sweeps downgrade a membership at most once.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from memberbase.core.config import settings
from memberbase.core.errors import NotFoundError, StateConflictError, UpstreamError, ValidationError
from memberbase.core.security import now_utc
from memberbase.db.repositories import SystemRepo
from memberbase.services.audit import audit_membership_change
from memberbase.services.tiers import BILLING_CYCLES, TierDirectory
from memberbase.services.usage import UsageEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrialStatus:
    is_on_trial: bool
    trial_starts_at: datetime | None
    trial_ends_at: datetime | None
    days_remaining: int
    has_used_trial: bool
    can_start_trial: bool
    is_expired: bool


@dataclass(frozen=True)
class ExpiryReport:
    expired: int
    errors: int


class TrialStateMachine:
    def __init__(self, repo: SystemRepo, directory: TierDirectory, usage: UsageEngine, clock=now_utc):
        self.repo = repo
        self.directory = directory
        self.usage = usage
        self.clock = clock

    def get_trial_status(self, user_id: str) -> TrialStatus:
        m = self.directory.require_membership(user_id)
        now = self.clock()
        ends = m.get("trial_ends_at")
        elapsed = bool(ends) and now > ends
        on_trial = m["status"] == "trial" and not elapsed
        days = 0
        if on_trial and ends:
            days = max(0, math.ceil((ends - now).total_seconds() / 86400))
        return TrialStatus(
            is_on_trial=on_trial,
            trial_starts_at=m.get("trial_starts_at"),
            trial_ends_at=ends,
            days_remaining=days,
            has_used_trial=bool(m["has_used_trial"]),
            can_start_trial=not m["has_used_trial"] and m["status"] != "trial",
            is_expired=m["status"] == "trial" and elapsed,
        )

    def can_start_trial(self, user_id: str) -> bool:
        return self.get_trial_status(user_id).can_start_trial

    def start_trial(self, user_id: str) -> dict:
        before = self.directory.require_membership(user_id)
        if before["has_used_trial"] or before["status"] == "trial":
            raise StateConflictError("Trial already used or currently active")
        trial_tier = self.directory.get_tier_by_name(settings.TRIAL_TIER_NAME)
        if not trial_tier:
            raise UpstreamError("Trial tier not configured")

        now = self.clock()
        ends = now + timedelta(days=settings.TRIAL_DURATION_DAYS)
        after = self.repo.begin_trial(user_id, trial_tier["id"], now, ends)
        if not after:
            # lost the race against another start
            raise StateConflictError("Trial already used or currently active")
        audit_membership_change(self.repo, before, after, {"source": "trial_start"})
        self.usage.update_limits_for_tier(user_id, trial_tier["id"])
        logger.info("trial started user=%s ends_at=%s", user_id, ends.isoformat())
        return after

    def _downgrade(self, user_id: str, *, only_if_elapsed: bool) -> bool:
        free_tier = self.directory.get_tier_by_name(settings.FREE_TIER_NAME)
        if not free_tier:
            logger.error("free tier not configured; cannot expire trial user=%s", user_id)
            return False
        before = self.repo.get_membership(user_id)
        after = self.repo.end_trial(user_id, free_tier["id"], self.clock(), only_if_elapsed=only_if_elapsed)
        if not after:
            return False
        audit_membership_change(self.repo, before, after, {"source": "trial_expiry"})
        self.usage.update_limits_for_tier(user_id, free_tier["id"])
        logger.info("trial expired user=%s", user_id)
        return True

    def check_and_expire_trial(self, user_id: str) -> bool:
        return self._downgrade(user_id, only_if_elapsed=True)

    def expire_single_trial(self, user_id: str) -> bool:
        return self._downgrade(user_id, only_if_elapsed=False)

    def expire_trials(self) -> ExpiryReport:
        expired = 0
        errors = 0
        for user_id in self.repo.list_elapsed_trials(self.clock()):
            try:
                with self.repo.atomic():
                    if self._downgrade(user_id, only_if_elapsed=True):
                        expired += 1
            except Exception:
                errors += 1
                logger.exception("trial expiry failed user=%s", user_id)
        logger.info("trial expiry sweep done expired=%s errors=%s", expired, errors)
        return ExpiryReport(expired=expired, errors=errors)

    def convert_trial_to_paid(
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
        if billing_cycle not in BILLING_CYCLES:
            raise ValidationError("billing_cycle must be monthly or yearly")
        m = self.directory.require_membership(user_id)
        if m["status"] != "trial":
            raise StateConflictError("User is not on trial")
        tier = self.directory.get_tier_by_id(tier_id)
        if not tier:
            raise NotFoundError("Tier not found")
        if tier["name"] in (settings.FREE_TIER_NAME, settings.TRIAL_TIER_NAME):
            raise StateConflictError("Cannot convert trial to free or trial tier")

        values = {
            "tier_id": tier_id,
            "status": "active",
            "billing_cycle": billing_cycle,
            "started_at": self.clock(),
        }
        if stripe_subscription_id:
            values["stripe_subscription_id"] = stripe_subscription_id
        if stripe_price_id:
            values["stripe_price_id"] = stripe_price_id
        if current_period_start:
            values["current_period_start"] = current_period_start
        if current_period_end:
            values["current_period_end"] = current_period_end
        after = self.directory.update_membership(user_id, values, {"source": "trial_conversion"})
        self.usage.update_limits_for_tier(user_id, tier_id)
        logger.info("trial converted user=%s tier=%s", user_id, tier["name"])
        return after
