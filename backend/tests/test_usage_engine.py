from datetime import datetime, timezone

import pytest

from memberbase.core.errors import NotFoundError
from memberbase.services.usage import end_of_day, end_of_month, percentage_of, remaining_of


def _api_calls_counter(repo, clock, *, current: int, limit: int, period_type: str = "monthly"):
    start = clock()
    end = end_of_month(start) if period_type == "monthly" else end_of_day(start)
    return repo.save_usage(
        {
            "user_id": "u1",
            "feature_key": "api_calls",
            "current_usage": current,
            "usage_limit": limit,
            "period_type": period_type,
            "period_start": start,
            "period_end": end,
        }
    )


def test_initialize_usage_creates_counter_per_limit_feature(repo, tier_ids, usage):
    repo.add_member("u1", tier_ids["free"])

    usage.initialize_usage("u1", tier_ids["free"])

    rows = {r["feature_key"]: r for r in repo.list_usage("u1")}
    assert set(rows) == {"team_collaboration", "api_integrations", "cloud_storage"}
    assert rows["cloud_storage"]["usage_limit"] == 500
    assert rows["api_integrations"]["usage_limit"] == 0
    assert all(r["current_usage"] == 0 for r in rows.values())
    assert all(r["period_type"] == "lifetime" and r["period_end"] is None for r in rows.values())


def test_can_use_without_counter_falls_back_to_feature_check(repo, tier_ids, usage):
    repo.add_member("u1", tier_ids["free"])
    feature = repo.create_feature({"key": "priority_support", "name": "Priority Support", "feature_type": "boolean"})
    repo.upsert_tier_feature(tier_ids["free"], feature["id"], "true", "none")

    assert usage.can_use("u1", "priority_support") is True
    assert repo.get_usage("u1", "priority_support") is None


def test_can_use_without_counter_denies_missing_feature(repo, tier_ids, usage):
    repo.add_member("u1", tier_ids["free"])

    assert usage.can_use("u1", "analytics_dashboard") is False
    assert usage.can_use("u1", "does_not_exist") is False


def test_increment_flags_overage_instead_of_blocking(repo, tier_ids, usage, clock):
    repo.add_member("u1", tier_ids["premium"])
    _api_calls_counter(repo, clock, current=999, limit=1000)

    first = usage.increment("u1", "api_calls", 1)
    assert first.current_usage == 1000
    assert first.is_exceeded is False
    assert first.remaining == 0

    second = usage.increment("u1", "api_calls", 1)
    assert second.current_usage == 1001
    assert second.is_exceeded is True
    assert second.remaining == 0


def test_increment_then_get_usage_reflects_amount_once(repo, tier_ids, usage, clock):
    repo.add_member("u1", tier_ids["premium"])
    _api_calls_counter(repo, clock, current=3, limit=1000)

    usage.increment("u1", "api_calls", 4)

    assert usage.get_usage("u1", "api_calls").current_usage == 7


def test_increment_initializes_counters_from_current_tier(repo, tier_ids, usage):
    repo.add_member("u1", tier_ids["premium"])

    result = usage.increment("u1", "api_integrations")

    assert result.current_usage == 1
    assert result.usage_limit == 10
    assert result.remaining == 9
    assert repo.get_usage("u1", "cloud_storage")["usage_limit"] == 5000


def test_increment_without_membership_or_counter_is_not_found(repo, tier_ids, usage):
    with pytest.raises(NotFoundError):
        usage.increment("ghost", "api_integrations")


def test_check_then_increment_is_not_atomic_known_race(repo, tier_ids, usage):
    # Two requests at limit - 1 both pass the check before either increments.
    repo.add_member("u1", tier_ids["premium"])
    usage.initialize_usage("u1", tier_ids["premium"])
    repo.add_usage("u1", "api_integrations", 9, repo.clock())

    first_allowed = usage.can_use("u1", "api_integrations")
    second_allowed = usage.can_use("u1", "api_integrations")
    usage.increment("u1", "api_integrations")
    last = usage.increment("u1", "api_integrations")

    assert first_allowed and second_allowed
    assert last.current_usage == 11
    assert last.is_exceeded is True
    assert usage.can_use("u1", "api_integrations") is False


def test_unlimited_counter_always_allows(repo, tier_ids, usage, clock):
    repo.add_member("u1", tier_ids["pro"])
    _api_calls_counter(repo, clock, current=1_000_000, limit=-1)

    assert usage.can_use("u1", "api_calls") is True
    snap = usage.get_usage("u1", "api_calls")
    assert snap.remaining == -1
    assert snap.percentage_used is None
    assert snap.is_exceeded is False


def test_zero_limit_counter_is_exhausted(repo, tier_ids, usage):
    repo.add_member("u1", tier_ids["free"])
    usage.initialize_usage("u1", tier_ids["free"])

    assert usage.can_use("u1", "api_integrations") is False


def test_get_usage_returns_none_without_counter(repo, tier_ids, usage):
    repo.add_member("u1", tier_ids["free"])

    assert usage.get_usage("u1", "api_integrations") is None


def test_lazy_rollover_resets_once_and_is_idempotent(repo, tier_ids, usage, clock):
    repo.add_member("u1", tier_ids["premium"])
    _api_calls_counter(repo, clock, current=5, limit=50, period_type="daily")

    clock.advance(days=1)
    first = usage.get_usage("u1", "api_calls")
    second = usage.get_usage("u1", "api_calls")

    assert first.current_usage == 0
    assert first.period_start == clock()
    assert first.period_end == end_of_day(clock())
    assert second == first


def test_rollover_happens_before_increment(repo, tier_ids, usage, clock):
    repo.add_member("u1", tier_ids["premium"])
    _api_calls_counter(repo, clock, current=50, limit=50)

    clock.advance(days=31)
    result = usage.increment("u1", "api_calls", 2)

    assert result.current_usage == 2
    assert result.is_exceeded is False


def test_lifetime_counter_never_rolls_over(repo, tier_ids, usage, clock):
    repo.add_member("u1", tier_ids["free"])
    usage.initialize_usage("u1", tier_ids["free"])
    repo.add_usage("u1", "cloud_storage", 120, clock())

    clock.advance(days=400)

    assert usage.get_usage("u1", "cloud_storage").current_usage == 120


def test_update_limits_for_tier_keeps_current_usage(repo, tier_ids, usage, clock):
    repo.add_member("u1", tier_ids["free"])
    usage.initialize_usage("u1", tier_ids["free"])
    repo.add_usage("u1", "team_collaboration", 1, clock())
    del repo.usage[("u1", "cloud_storage")]

    usage.update_limits_for_tier("u1", tier_ids["premium"])

    team = repo.get_usage("u1", "team_collaboration")
    assert team["usage_limit"] == 5
    assert team["current_usage"] == 1
    storage = repo.get_usage("u1", "cloud_storage")
    assert storage["usage_limit"] == 5000
    assert storage["current_usage"] == 0


def test_get_all_usage_summarizes_with_percentages(repo, tier_ids, usage, clock):
    repo.add_member("u1", tier_ids["premium"])
    usage.initialize_usage("u1", tier_ids["premium"])
    repo.add_usage("u1", "api_integrations", 5, clock())
    repo.add_usage("u1", "team_collaboration", 9, clock())

    summary = usage.get_all_usage("u1")

    assert summary.tier_name == "premium"
    by_key = {f.feature_key: f for f in summary.features}
    assert [f.feature_key for f in summary.features] == sorted(by_key)
    assert by_key["api_integrations"].percentage_used == 50
    assert by_key["team_collaboration"].percentage_used == 100
    assert by_key["team_collaboration"].is_exceeded is True
    assert by_key["cloud_storage"].percentage_used == 0


def test_reset_periodic_usage_only_touches_elapsed_windows(repo, tier_ids, usage, clock):
    repo.add_member("u1", tier_ids["premium"])
    usage.initialize_usage("u1", tier_ids["premium"])
    repo.add_usage("u1", "cloud_storage", 10, clock())
    _api_calls_counter(repo, clock, current=40, limit=100)

    clock.advance(days=40)
    count = usage.reset_periodic_usage()

    assert count == 1
    assert repo.get_usage("u1", "api_calls")["current_usage"] == 0
    assert repo.get_usage("u1", "api_calls")["period_end"] == end_of_month(clock())
    assert repo.get_usage("u1", "cloud_storage")["current_usage"] == 10
    assert usage.reset_periodic_usage() == 0


@pytest.mark.parametrize(
    "current, limit, expected",
    [
        (1, 3, 33),
        (2, 3, 67),
        (1, 2, 50),
        (1, 200, 1),
        (150, 100, 100),
        (4, 0, 100),
        (10, -1, None),
    ],
)
def test_percentage_is_rounded_and_clamped(current, limit, expected):
    assert percentage_of(current, limit) == expected


def test_remaining_never_negative_and_unlimited_stays_sentinel():
    assert remaining_of(12, 10) == 0
    assert remaining_of(3, 10) == 7
    assert remaining_of(99, -1) == -1


def test_period_boundaries_are_end_of_utc_day_and_month():
    now = datetime(2024, 2, 10, 8, 30, tzinfo=timezone.utc)

    assert end_of_day(now) == datetime(2024, 2, 10, 23, 59, 59, 999000, tzinfo=timezone.utc)
    assert end_of_month(now) == datetime(2024, 2, 29, 23, 59, 59, 999000, tzinfo=timezone.utc)
