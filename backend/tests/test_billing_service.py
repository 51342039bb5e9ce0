import pytest

from memberbase.core.errors import NotFoundError, StateConflictError, ValidationError
from memberbase.services.billing import BillingService
from memberbase.services.billing_provider import SubscriptionSnapshot


@pytest.fixture
def billing(repo, directory, payments):
    return BillingService(repo, directory, payments)


@pytest.fixture
def priced(repo, tier_ids):
    repo.update_tier(
        tier_ids["premium"],
        {"stripe_price_id_monthly": "price_premium_m", "stripe_price_id_yearly": "price_premium_y"},
    )
    return tier_ids


def test_checkout_creates_customer_once_and_reuses_it(repo, billing, payments, priced):
    repo.add_member("u1", priced["free"])

    first = billing.create_checkout_session("u1", "u1@example.com", priced["premium"], "monthly")
    second = billing.create_checkout_session("u1", "u1@example.com", priced["premium"], "yearly")

    assert first == "https://checkout.test/cs_1"
    assert second == "https://checkout.test/cs_2"
    assert payments.customers == [("u1@example.com", "u1")]
    assert repo.get_profile("u1")["stripe_customer_id"] == "cus_1"
    assert [c.price_id for c in payments.checkouts] == ["price_premium_m", "price_premium_y"]
    assert payments.checkouts[0].customer_id == "cus_1"
    assert payments.checkouts[0].tier_id == priced["premium"]


def test_checkout_default_urls_carry_session_placeholder(repo, billing, payments, priced):
    repo.add_member("u1", priced["free"])

    billing.create_checkout_session("u1", "u1@example.com", priced["premium"], "monthly")

    request = payments.checkouts[0]
    assert request.success_url.endswith("/billing/success?session_id={CHECKOUT_SESSION_ID}")
    assert request.cancel_url.endswith("/billing/cancel")


def test_checkout_honours_explicit_urls(repo, billing, payments, priced):
    repo.add_member("u1", priced["free"])

    billing.create_checkout_session(
        "u1", "u1@example.com", priced["premium"], "monthly", "https://app.test/ok", "https://app.test/no"
    )

    assert payments.checkouts[0].success_url == "https://app.test/ok"
    assert payments.checkouts[0].cancel_url == "https://app.test/no"


def test_checkout_without_price_is_rejected(repo, billing, payments, tier_ids):
    repo.add_member("u1", tier_ids["free"])

    with pytest.raises(ValidationError, match="No price configured"):
        billing.create_checkout_session("u1", "u1@example.com", tier_ids["pro"], "monthly")
    assert payments.customers == []


def test_checkout_rejects_bad_cycle_and_unknown_tier(billing, priced):
    with pytest.raises(ValidationError):
        billing.create_checkout_session("u1", "u1@example.com", priced["premium"], "weekly")
    with pytest.raises(NotFoundError):
        billing.create_checkout_session("u1", "u1@example.com", "tier-missing", "monthly")


def test_concurrent_customer_creation_keeps_the_stored_one(repo, billing, payments, tier_ids, monkeypatch):
    repo.add_member("u1", tier_ids["free"])

    def racing_create(email, user_id):
        # another request stores its customer while ours is in flight
        repo.profiles[user_id]["stripe_customer_id"] = "cus_winner"
        return "cus_loser"

    monkeypatch.setattr(payments, "create_customer", racing_create)

    assert billing.get_or_create_customer("u1", "u1@example.com") == "cus_winner"
    assert repo.get_profile("u1")["stripe_customer_id"] == "cus_winner"


def test_portal_requires_customer(repo, billing, tier_ids):
    repo.add_member("u1", tier_ids["free"])

    with pytest.raises(ValidationError):
        billing.create_portal_session("u1")


def test_portal_uses_stored_customer(repo, billing, payments, tier_ids):
    repo.add_member("u1", tier_ids["free"])
    repo.set_stripe_customer_id("u1", "cus_7")

    url = billing.create_portal_session("u1", "https://app.test/back")

    assert url == "https://portal.test/cus_7"
    assert payments.portals == [("cus_7", "https://app.test/back")]


def test_cancel_without_subscription_is_a_conflict(repo, billing, tier_ids):
    repo.add_member("u1", tier_ids["free"])

    with pytest.raises(StateConflictError):
        billing.cancel_subscription("u1")


def test_cancel_then_reactivate(repo, billing, payments, tier_ids):
    repo.add_member("u1", tier_ids["premium"], stripe_subscription_id="sub_1", billing_cycle="monthly")
    payments.subscriptions["sub_1"] = SubscriptionSnapshot(id="sub_1", status="active", metadata={"user_id": "u1"})

    sub = billing.cancel_subscription("u1")

    assert sub.cancel_at_period_end is True
    assert repo.get_membership("u1")["cancel_at_period_end"] is True
    assert repo.get_membership("u1")["status"] == "active"

    billing.reactivate_subscription("u1")

    assert repo.get_membership("u1")["cancel_at_period_end"] is False


def test_payment_history_is_newest_first(repo, billing, tier_ids, clock):
    repo.add_member("u1", tier_ids["premium"])
    repo.insert_payment({"user_id": "u1", "amount": 29, "status": "succeeded"})
    clock.advance(days=30)
    repo.insert_payment({"user_id": "u1", "amount": 29, "status": "failed"})
    repo.insert_payment({"user_id": "u2", "amount": 79, "status": "succeeded"})

    history = billing.get_payment_history("u1")

    assert [p["status"] for p in history] == ["failed", "succeeded"]
