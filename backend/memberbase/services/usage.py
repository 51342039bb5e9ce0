"""Usage engine: per-user, per-feature quota counters with reset windows.

Counters are never clamped here. Blocking happens in the access gate, which
calls ``can_use`` before the handler and ``increment`` after it succeeds.
The two steps are not transactional: concurrent requests at ``limit - 1``
can both pass the check and both land their increment.

Rollover is lazy. Before any counter is read or written, a daily/monthly
counter whose ``period_end`` has passed is zeroed and moved to the next
window. ``reset_periodic_usage`` does the same in bulk for cron.
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from memberbase.core.errors import NotFoundError
from memberbase.core.security import now_utc
from memberbase.db.repositories import SystemRepo
from memberbase.services.feature_values import UNLIMITED, LimitValue, parse_feature_value
from memberbase.services.tiers import TierDirectory

logger = logging.getLogger(__name__)

WINDOWED_PERIODS = {"daily", "monthly"}
PERIOD_TYPES = {"none", "daily", "monthly", "lifetime"}


@dataclass(frozen=True)
class UsageResult:
    current_usage: int
    usage_limit: int
    remaining: int
    is_exceeded: bool


@dataclass(frozen=True)
class FeatureUsage:
    feature_key: str
    current_usage: int
    usage_limit: int
    remaining: int
    is_exceeded: bool
    percentage_used: int | None
    period_type: str
    period_start: datetime | None
    period_end: datetime | None


@dataclass(frozen=True)
class UsageSummary:
    tier_name: str | None
    features: list[FeatureUsage]


def end_of_day(now: datetime) -> datetime:
    now = now.astimezone(timezone.utc)
    return now.replace(hour=23, minute=59, second=59, microsecond=999000)


def end_of_month(now: datetime) -> datetime:
    now = now.astimezone(timezone.utc)
    last_day = calendar.monthrange(now.year, now.month)[1]
    return now.replace(day=last_day, hour=23, minute=59, second=59, microsecond=999000)


def period_window(period_type: str, now: datetime) -> tuple[datetime, datetime | None]:
    if period_type == "daily":
        return now, end_of_day(now)
    if period_type == "monthly":
        return now, end_of_month(now)
    return now, None


def remaining_of(current: int, limit: int) -> int:
    if limit == UNLIMITED:
        return UNLIMITED
    return max(0, limit - current)


def percentage_of(current: int, limit: int) -> int | None:
    if limit == UNLIMITED:
        return None
    if limit <= 0:
        return 100
    # round half up, integer only
    pct = (current * 200 + limit) // (2 * limit)
    return min(100, pct)


def _snapshot(row: dict) -> FeatureUsage:
    current = row["current_usage"]
    limit = row["usage_limit"]
    return FeatureUsage(
        feature_key=row["feature_key"],
        current_usage=current,
        usage_limit=limit,
        remaining=remaining_of(current, limit),
        is_exceeded=limit != UNLIMITED and current >= limit,
        percentage_used=percentage_of(current, limit),
        period_type=row["period_type"],
        period_start=row.get("period_start"),
        period_end=row.get("period_end"),
    )


class UsageEngine:
    def __init__(self, repo: SystemRepo, directory: TierDirectory, clock=now_utc):
        self.repo = repo
        self.directory = directory
        self.clock = clock

    def _limit_bindings(self, tier_id: str) -> list[tuple[str, int, str]]:
        out = []
        for tf in self.repo.list_tier_features(tier_id):
            if tf["feature_type"] != "limit":
                continue
            value = parse_feature_value("limit", tf["value"])
            period_type = tf.get("period_type") or "lifetime"
            if period_type not in PERIOD_TYPES:
                period_type = "lifetime"
            out.append((tf["key"], value.limit if isinstance(value, LimitValue) else 0, period_type))
        return out

    def _fresh_row(self, user_id: str, feature_key: str, limit: int, period_type: str) -> dict:
        start, end = period_window(period_type, self.clock())
        return {
            "user_id": user_id,
            "feature_key": feature_key,
            "current_usage": 0,
            "usage_limit": limit,
            "period_type": period_type,
            "period_start": start,
            "period_end": end,
        }

    def _rollover(self, row: dict) -> dict:
        if row["period_type"] not in WINDOWED_PERIODS or row.get("period_end") is None:
            return row
        now = self.clock()
        if now <= row["period_end"]:
            return row
        start, end = period_window(row["period_type"], now)
        logger.info(
            "usage period rolled over user=%s feature=%s previous_usage=%s",
            row["user_id"],
            row["feature_key"],
            row["current_usage"],
        )
        return self.repo.save_usage({**row, "current_usage": 0, "period_start": start, "period_end": end})

    def initialize_usage(self, user_id: str, tier_id: str) -> None:
        for key, limit, period_type in self._limit_bindings(tier_id):
            self.repo.save_usage(self._fresh_row(user_id, key, limit, period_type))

    def update_limits_for_tier(self, user_id: str, tier_id: str) -> None:
        # Existing counters keep current_usage; only features without a counter start fresh.
        for key, limit, period_type in self._limit_bindings(tier_id):
            if not self.repo.set_usage_limit(user_id, key, limit):
                self.repo.save_usage(self._fresh_row(user_id, key, limit, period_type))

    def can_use(self, user_id: str, feature_key: str) -> bool:
        row = self.repo.get_usage(user_id, feature_key)
        if not row:
            return self.directory.user_has_feature(user_id, feature_key)
        row = self._rollover(row)
        return row["usage_limit"] == UNLIMITED or row["current_usage"] < row["usage_limit"]

    def increment(self, user_id: str, feature_key: str, amount: int = 1) -> UsageResult:
        row = self.repo.get_usage(user_id, feature_key)
        if not row:
            membership = self.directory.get_user_membership(user_id)
            if membership:
                self.initialize_usage(user_id, membership["tier_id"])
            row = self.repo.get_usage(user_id, feature_key)
            if not row:
                raise NotFoundError(f"No usage tracking for feature '{feature_key}'")
        self._rollover(row)
        updated = self.repo.add_usage(user_id, feature_key, amount, self.clock())
        if not updated:
            raise NotFoundError(f"No usage tracking for feature '{feature_key}'")
        current = updated["current_usage"]
        limit = updated["usage_limit"]
        return UsageResult(
            current_usage=current,
            usage_limit=limit,
            remaining=remaining_of(current, limit),
            is_exceeded=limit != UNLIMITED and current > limit,
        )

    def get_usage(self, user_id: str, feature_key: str) -> FeatureUsage | None:
        row = self.repo.get_usage(user_id, feature_key)
        if not row:
            return None
        return _snapshot(self._rollover(row))

    def get_all_usage(self, user_id: str) -> UsageSummary:
        membership = self.directory.get_user_membership(user_id)
        rows = [self._rollover(r) for r in self.repo.list_usage(user_id)]
        return UsageSummary(
            tier_name=membership["tier_name"] if membership else None,
            features=[_snapshot(r) for r in rows],
        )

    def reset_periodic_usage(self) -> int:
        now = self.clock()
        count = 0
        for row in self.repo.list_due_usage(now):
            start, end = period_window(row["period_type"], now)
            self.repo.save_usage({**row, "current_usage": 0, "period_start": start, "period_end": end})
            count += 1
        logger.info("periodic usage reset done count=%s", count)
        return count
