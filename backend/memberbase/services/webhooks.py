"""Billing reconciler: applies payment-provider events to memberships.

Every event is logged first, keyed by the provider's event id. An event that
already went through cleanly is acknowledged without touching state again;
one that failed earlier is processed again and its retry counter bumped.
Handler effects run inside a savepoint, so a failing handler leaves only the
logged error behind and the exception goes back to the provider for retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from memberbase.core.config import settings
from memberbase.core.errors import UpstreamError, ValidationError
from memberbase.core.security import now_utc
from memberbase.db.repositories import SystemRepo
from memberbase.services.billing_provider import PaymentProvider, epoch_to_datetime, field_of, subscription_snapshot
from memberbase.services.tiers import TierDirectory
from memberbase.services.usage import UsageEngine

logger = logging.getLogger(__name__)

SUBSCRIPTION_STATUS_MAP = {
    "trialing": "trial",
    "past_due": "past_due",
    "canceled": "cancelled",
    "unpaid": "expired",
}


def map_subscription_status(provider_status: str | None) -> str:
    return SUBSCRIPTION_STATUS_MAP.get(provider_status or "", "active")


def minor_to_major(amount) -> Decimal:
    return Decimal(int(amount or 0)) / Decimal(100)


@dataclass(frozen=True)
class WebhookOutcome:
    event_id: str
    event_type: str
    duplicate: bool
    processed: bool


class BillingReconciler:
    def __init__(
        self,
        repo: SystemRepo,
        directory: TierDirectory,
        usage: UsageEngine,
        provider: PaymentProvider,
        clock=now_utc,
    ):
        self.repo = repo
        self.directory = directory
        self.usage = usage
        self.provider = provider
        self.clock = clock
        self._handlers = {
            "checkout.session.completed": self._checkout_completed,
            "customer.subscription.created": self._subscription_changed,
            "customer.subscription.updated": self._subscription_changed,
            "customer.subscription.deleted": self._subscription_deleted,
            "invoice.paid": self._invoice_paid,
            "invoice.payment_failed": self._invoice_payment_failed,
        }

    def process_event(self, event: dict) -> WebhookOutcome:
        event_id = event.get("id")
        event_type = event.get("type")
        if not event_id or not event_type:
            raise ValidationError("Webhook event without id or type")

        logged = self.repo.log_webhook_event(event_id, event_type, event)
        if not logged:
            prior = self.repo.get_webhook_event(event_id)
            if prior and prior["processed"] and not prior["error_message"]:
                logger.info("duplicate webhook ignored id=%s type=%s", event_id, event_type)
                return WebhookOutcome(event_id, event_type, duplicate=True, processed=False)
            self.repo.bump_webhook_retry(event_id)
            logger.info("reprocessing webhook id=%s type=%s", event_id, event_type)

        handler = self._handlers.get(event_type)
        obj = field_of(event, "data", "object") or {}
        try:
            with self.repo.atomic():
                if handler is None:
                    logger.info("unhandled webhook type=%s id=%s", event_type, event_id)
                else:
                    handler(obj)
        except Exception as exc:
            self.repo.finish_webhook_event(event_id, error=str(exc) or exc.__class__.__name__)
            logger.exception("webhook handler failed id=%s type=%s", event_id, event_type)
            raise
        self.repo.finish_webhook_event(event_id)
        logger.info("webhook processed id=%s type=%s", event_id, event_type)
        return WebhookOutcome(event_id, event_type, duplicate=False, processed=handler is not None)

    def _checkout_completed(self, session: dict):
        metadata = field_of(session, "metadata") or {}
        user_id = metadata.get("user_id")
        tier_id = metadata.get("tier_id")
        billing_cycle = metadata.get("billing_cycle")
        subscription_id = field_of(session, "subscription")
        if not (user_id and tier_id and billing_cycle and subscription_id):
            logger.warning("checkout session missing metadata session=%s", field_of(session, "id"))
            return

        customer_id = field_of(session, "customer")
        if customer_id:
            self.repo.set_stripe_customer_id(user_id, customer_id)

        sub = self.provider.retrieve_subscription(subscription_id)
        self.directory.upgrade_membership(
            user_id,
            tier_id,
            billing_cycle,
            stripe_subscription_id=subscription_id,
            stripe_price_id=sub.price_id,
            current_period_start=sub.current_period_start,
            current_period_end=sub.current_period_end,
        )
        self.usage.update_limits_for_tier(user_id, tier_id)

    def _subscription_changed(self, obj: dict):
        sub = subscription_snapshot(obj)
        user_id = sub.metadata.get("user_id")
        if not user_id:
            logger.warning("subscription without user_id metadata sub=%s", sub.id)
            return
        values = {
            "status": map_subscription_status(sub.status),
            "cancel_at_period_end": sub.cancel_at_period_end,
            "stripe_subscription_id": sub.id,
        }
        if sub.price_id:
            values["stripe_price_id"] = sub.price_id
        if sub.current_period_start:
            values["current_period_start"] = sub.current_period_start
        if sub.current_period_end:
            values["current_period_end"] = sub.current_period_end
        self.directory.update_membership(user_id, values, {"source": "billing", "provider_status": sub.status})

    def _subscription_deleted(self, obj: dict):
        sub = subscription_snapshot(obj)
        user_id = sub.metadata.get("user_id")
        if not user_id:
            logger.warning("deleted subscription without user_id metadata sub=%s", sub.id)
            return
        free_tier = self.directory.get_tier_by_name(settings.FREE_TIER_NAME)
        if not free_tier:
            raise UpstreamError("Free tier not configured")
        self.directory.update_membership(
            user_id,
            {
                "tier_id": free_tier["id"],
                "status": "active",
                "billing_cycle": None,
                "stripe_subscription_id": None,
                "stripe_price_id": None,
                "current_period_start": None,
                "current_period_end": None,
                "cancel_at_period_end": False,
                "cancelled_at": self.clock(),
            },
            {"source": "billing", "provider_status": sub.status},
        )
        self.usage.update_limits_for_tier(user_id, free_tier["id"])

    def _invoice_user(self, invoice: dict) -> tuple[str | None, str | None]:
        subscription_id = field_of(invoice, "subscription") or field_of(
            invoice, "parent", "subscription_details", "subscription"
        )
        if isinstance(subscription_id, dict):
            subscription_id = subscription_id.get("id")
        metadata = (
            field_of(invoice, "subscription_details", "metadata")
            or field_of(invoice, "parent", "subscription_details", "metadata")
            or {}
        )
        user_id = metadata.get("user_id")
        if not user_id and subscription_id:
            user_id = self.provider.retrieve_subscription(subscription_id).metadata.get("user_id")
        return user_id, subscription_id

    def _line_description(self, invoice: dict) -> str:
        return field_of(invoice, "lines", "data", 0, "description") or "subscription"

    def _invoice_paid(self, invoice: dict):
        user_id, subscription_id = self._invoice_user(invoice)
        if not user_id:
            logger.warning("paid invoice without resolvable user invoice=%s", field_of(invoice, "id"))
            return
        membership = self.directory.get_user_membership(user_id)
        amount = minor_to_major(field_of(invoice, "amount_paid"))
        currency = field_of(invoice, "currency") or "usd"
        paid_at = epoch_to_datetime(field_of(invoice, "status_transitions", "paid_at")) or self.clock()
        self.repo.insert_payment(
            {
                "user_id": user_id,
                "membership_id": membership["id"] if membership else None,
                "stripe_payment_intent_id": field_of(invoice, "payment_intent"),
                "stripe_invoice_id": field_of(invoice, "id"),
                "stripe_charge_id": field_of(invoice, "charge"),
                "stripe_subscription_id": subscription_id,
                "amount": amount,
                "currency": currency,
                "status": "succeeded",
                "invoice_url": field_of(invoice, "hosted_invoice_url"),
                "invoice_pdf": field_of(invoice, "invoice_pdf"),
                "description": field_of(invoice, "description") or f"Payment for {self._line_description(invoice)}",
                "failure_reason": None,
                "paid_at": paid_at,
            }
        )
        if membership:
            self.directory.update_membership(
                user_id,
                {
                    "last_payment_at": paid_at,
                    "last_payment_amount": amount,
                    "last_payment_currency": currency,
                    "stripe_latest_invoice_id": field_of(invoice, "id"),
                    "stripe_latest_invoice_status": field_of(invoice, "status") or "paid",
                },
            )

    def _invoice_payment_failed(self, invoice: dict):
        user_id, subscription_id = self._invoice_user(invoice)
        if not user_id:
            logger.warning("failed invoice without resolvable user invoice=%s", field_of(invoice, "id"))
            return
        membership = self.directory.get_user_membership(user_id)
        self.repo.insert_payment(
            {
                "user_id": user_id,
                "membership_id": membership["id"] if membership else None,
                "stripe_payment_intent_id": field_of(invoice, "payment_intent"),
                "stripe_invoice_id": field_of(invoice, "id"),
                "stripe_charge_id": field_of(invoice, "charge"),
                "stripe_subscription_id": subscription_id,
                "amount": minor_to_major(field_of(invoice, "amount_due")),
                "currency": field_of(invoice, "currency") or "usd",
                "status": "failed",
                "invoice_url": field_of(invoice, "hosted_invoice_url"),
                "invoice_pdf": None,
                "description": f"Failed payment for {self._line_description(invoice)}",
                "failure_reason": field_of(invoice, "last_finalization_error", "message") or "Payment failed",
                "paid_at": None,
            }
        )
        if membership:
            self.directory.update_membership(
                user_id,
                {
                    "status": "past_due",
                    "stripe_latest_invoice_id": field_of(invoice, "id"),
                    "stripe_latest_invoice_status": field_of(invoice, "status") or "open",
                },
                {"source": "billing"},
            )
