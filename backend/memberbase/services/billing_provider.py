from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

import stripe

from memberbase.core.errors import UpstreamError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutSessionRequest:
    customer_id: str
    price_id: str
    user_id: str
    tier_id: str
    billing_cycle: str
    success_url: str
    cancel_url: str


@dataclass(frozen=True)
class CheckoutSessionResponse:
    session_id: str
    checkout_url: str


@dataclass(frozen=True)
class SubscriptionSnapshot:
    id: str
    status: str
    cancel_at_period_end: bool = False
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    price_id: str | None = None
    metadata: dict = field(default_factory=dict)


class PaymentProvider(Protocol):
    def create_customer(self, email: str, user_id: str) -> str:
        ...

    def create_checkout_session(self, request: CheckoutSessionRequest) -> CheckoutSessionResponse:
        ...

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        ...

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        ...

    def set_cancel_at_period_end(self, subscription_id: str, cancel: bool) -> SubscriptionSnapshot:
        ...

    def verify_webhook(self, payload: bytes, signature: str | None) -> dict:
        ...


def field_of(obj, *path):
    """Walk nested keys on dicts or provider objects; None when any hop is missing."""
    cur = obj
    for key in path:
        if cur is None:
            return None
        try:
            cur = cur[key]
        except (KeyError, IndexError, TypeError):
            return None
    return cur


def epoch_to_datetime(value) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def subscription_snapshot(obj) -> SubscriptionSnapshot:
    # Newer API versions moved the period bounds from the subscription onto its items.
    first_item = field_of(obj, "items", "data", 0)
    start = field_of(obj, "current_period_start") or field_of(first_item, "current_period_start")
    end = field_of(obj, "current_period_end") or field_of(first_item, "current_period_end")
    metadata = field_of(obj, "metadata") or {}
    return SubscriptionSnapshot(
        id=field_of(obj, "id"),
        status=field_of(obj, "status") or "active",
        cancel_at_period_end=bool(field_of(obj, "cancel_at_period_end")),
        current_period_start=epoch_to_datetime(start),
        current_period_end=epoch_to_datetime(end),
        price_id=field_of(first_item, "price", "id"),
        metadata={k: metadata[k] for k in metadata.keys()},
    )


class StripePaymentProvider:
    def __init__(self, secret_key: str | None, webhook_secret: str | None, tolerance_seconds: int = 300):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.tolerance_seconds = tolerance_seconds

    def _require_key(self) -> str:
        if not self.secret_key:
            raise UpstreamError("Payment provider is not configured")
        return self.secret_key

    def create_customer(self, email: str, user_id: str) -> str:
        try:
            customer = stripe.Customer.create(
                api_key=self._require_key(),
                email=email,
                metadata={"user_id": user_id},
            )
        except stripe.StripeError as exc:
            logger.error("stripe customer create failed user=%s: %s", user_id, exc)
            raise UpstreamError("Failed to create billing customer") from exc
        return customer["id"]

    def create_checkout_session(self, request: CheckoutSessionRequest) -> CheckoutSessionResponse:
        metadata = {
            "user_id": request.user_id,
            "tier_id": request.tier_id,
            "billing_cycle": request.billing_cycle,
        }
        try:
            session = stripe.checkout.Session.create(
                api_key=self._require_key(),
                customer=request.customer_id,
                mode="subscription",
                line_items=[{"price": request.price_id, "quantity": 1}],
                success_url=request.success_url,
                cancel_url=request.cancel_url,
                metadata=metadata,
                subscription_data={"metadata": metadata},
            )
        except stripe.StripeError as exc:
            logger.error("stripe checkout create failed user=%s: %s", request.user_id, exc)
            raise UpstreamError("Failed to create checkout session") from exc
        url = field_of(session, "url")
        if not url:
            raise UpstreamError("Failed to create checkout session")
        return CheckoutSessionResponse(session_id=session["id"], checkout_url=url)

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        try:
            session = stripe.billing_portal.Session.create(
                api_key=self._require_key(),
                customer=customer_id,
                return_url=return_url,
            )
        except stripe.StripeError as exc:
            logger.error("stripe portal create failed customer=%s: %s", customer_id, exc)
            raise UpstreamError("Failed to create portal session") from exc
        return session["url"]

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        try:
            sub = stripe.Subscription.retrieve(subscription_id, api_key=self._require_key())
        except stripe.StripeError as exc:
            logger.error("stripe subscription retrieve failed id=%s: %s", subscription_id, exc)
            raise UpstreamError("Failed to retrieve subscription") from exc
        return subscription_snapshot(sub)

    def set_cancel_at_period_end(self, subscription_id: str, cancel: bool) -> SubscriptionSnapshot:
        try:
            sub = stripe.Subscription.modify(
                subscription_id,
                api_key=self._require_key(),
                cancel_at_period_end=cancel,
            )
        except stripe.StripeError as exc:
            logger.error("stripe subscription modify failed id=%s: %s", subscription_id, exc)
            raise UpstreamError("Failed to update subscription") from exc
        return subscription_snapshot(sub)

    def verify_webhook(self, payload: bytes, signature: str | None) -> dict:
        if not self.webhook_secret:
            raise UpstreamError("Webhook secret is not configured")
        if not signature:
            raise ValidationError("Missing stripe-signature header")
        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ValidationError("Invalid webhook payload") from exc
        try:
            stripe.WebhookSignature.verify_header(
                text,
                signature,
                self.webhook_secret,
                self.tolerance_seconds,
            )
        except stripe.SignatureVerificationError as exc:
            logger.warning("webhook signature rejected: %s", exc)
            raise ValidationError("Invalid webhook signature") from exc
        try:
            event = json.loads(payload)
        except ValueError as exc:
            raise ValidationError("Invalid webhook payload") from exc
        if not isinstance(event, dict):
            raise ValidationError("Invalid webhook payload")
        return event
