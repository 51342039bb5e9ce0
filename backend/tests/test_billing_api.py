from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from memberbase.services.billing_provider import SubscriptionSnapshot


def _post_event(client, event: dict, signature: str | None = "valid"):
    headers = {"Content-Type": "application/json"}
    if signature is not None:
        headers["stripe-signature"] = signature
    return client.post("/billing/webhook", content=json.dumps(event), headers=headers)


def _failed_invoice_event(event_id: str, subscription: str) -> dict:
    return {
        "id": event_id,
        "type": "invoice.payment_failed",
        "data": {
            "object": {
                "id": "in_1",
                "amount_due": 2999,
                "currency": "usd",
                "status": "open",
                "subscription": subscription,
                "lines": {"data": [{"description": "Premium (monthly)"}]},
            }
        },
    }


@pytest.fixture
def subscriber(repo, tier_ids, payments):
    repo.add_member("u1", tier_ids["premium"], stripe_subscription_id="sub_1", billing_cycle="monthly")
    payments.subscriptions["sub_1"] = SubscriptionSnapshot(
        id="sub_1",
        status="active",
        current_period_end=datetime(2025, 4, 10, tzinfo=timezone.utc),
        metadata={"user_id": "u1"},
    )
    return "u1"


def test_webhook_rejects_bad_signature(client, repo):
    resp = _post_event(client, {"id": "evt_1", "type": "invoice.paid"}, signature="forged")

    assert resp.status_code == 400
    assert resp.json()["code"] == "VALIDATION_ERROR"
    assert repo.webhooks == {}


def test_webhook_processes_and_acknowledges(client, repo, subscriber, session):
    resp = _post_event(client, _failed_invoice_event("evt_1", "sub_1"))

    assert resp.status_code == 200
    assert resp.json()["data"] == {"received": True, "event_id": "evt_1", "duplicate": False, "processed": True}
    assert repo.get_membership("u1")["status"] == "past_due"
    assert len(repo.payments) == 1
    assert session.commits == 1


def test_webhook_replay_is_acknowledged_once(client, repo, subscriber):
    event = _failed_invoice_event("evt_1", "sub_1")

    _post_event(client, event)
    replay = _post_event(client, event)

    assert replay.status_code == 200
    assert replay.json()["data"]["duplicate"] is True
    assert len(repo.payments) == 1


def test_webhook_failure_is_logged_for_retry(client, repo, subscriber, session):
    resp = _post_event(client, _failed_invoice_event("evt_2", "sub_gone"))

    assert resp.status_code == 500
    assert resp.json()["success"] is False
    logged = repo.webhooks["evt_2"]
    assert logged["processed"] is False
    assert logged["error_message"]
    assert session.commits == 1
    assert repo.payments == []


def test_checkout_session_endpoint(client, bearer, repo, tier_ids, payments):
    repo.update_tier(tier_ids["premium"], {"stripe_price_id_monthly": "price_premium_m"})

    resp = client.post(
        "/billing/create-checkout-session",
        headers=bearer("u1", "u1@example.com"),
        json={"tier_id": tier_ids["premium"]},
    )

    assert resp.status_code == 200
    assert resp.json()["data"] == {"checkout_url": "https://checkout.test/cs_1"}
    assert payments.checkouts[0].user_id == "u1"
    assert repo.get_profile("u1")["stripe_customer_id"] == "cus_1"


def test_checkout_for_unpriced_tier(client, bearer, tier_ids):
    resp = client.post("/billing/create-checkout-session", headers=bearer("u1"), json={"tier_id": tier_ids["pro"]})

    assert resp.status_code == 400


def test_portal_session_endpoint(client, bearer, repo, tier_ids):
    headers = bearer("u1")

    missing = client.post("/billing/create-portal-session", headers=headers)
    assert missing.status_code == 400

    repo.add_member("u1", tier_ids["premium"])
    repo.set_stripe_customer_id("u1", "cus_5")
    resp = client.post("/billing/create-portal-session", headers=headers, json={"return_url": "https://app.test/x"})

    assert resp.status_code == 200
    assert resp.json()["data"] == {"portal_url": "https://portal.test/cus_5"}


def test_payment_history_only_lists_own_payments(client, bearer, repo, tier_ids):
    repo.add_member("u1", tier_ids["premium"])
    for user_id in ("u1", "u2"):
        repo.insert_payment(
            {
                "user_id": user_id,
                "amount": 29,
                "currency": "usd",
                "status": "succeeded",
                "stripe_invoice_id": f"in_{user_id}",
            }
        )

    resp = client.get("/billing/payment-history", headers=bearer("u1"))

    assert resp.status_code == 200
    rows = resp.json()["data"]
    assert [r["stripe_invoice_id"] for r in rows] == ["in_u1"]
    assert rows[0]["amount"] == 29.0


def test_cancel_and_reactivate_endpoints(client, bearer, repo, subscriber):
    headers = bearer("u1")

    cancelled = client.post("/billing/subscription/cancel", headers=headers)
    assert cancelled.status_code == 200
    assert cancelled.json()["data"]["cancel_at_period_end"] is True
    assert repo.get_membership("u1")["cancel_at_period_end"] is True

    reactivated = client.post("/billing/subscription/reactivate", headers=headers)
    assert reactivated.json()["data"]["cancel_at_period_end"] is False


def test_cancel_without_subscription(client, bearer, repo, tier_ids):
    repo.add_member("u1", tier_ids["free"])

    resp = client.post("/billing/subscription/cancel", headers=bearer("u1"))

    assert resp.status_code == 400
    assert resp.json()["code"] == "STATE_CONFLICT"
