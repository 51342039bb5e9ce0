from __future__ import annotations

import logging

from memberbase.core.config import settings
from memberbase.core.errors import NotFoundError, StateConflictError, ValidationError
from memberbase.db.repositories import SystemRepo, UserScopedRepo
from memberbase.services.billing_provider import CheckoutSessionRequest, PaymentProvider, SubscriptionSnapshot
from memberbase.services.tiers import BILLING_CYCLES, TierDirectory
from memberbase.services.webhooks import map_subscription_status

logger = logging.getLogger(__name__)


def default_success_url() -> str:
    return f"{settings.FRONTEND_URL}/billing/success?session_id={{CHECKOUT_SESSION_ID}}"


def default_cancel_url() -> str:
    return f"{settings.FRONTEND_URL}/billing/cancel"


class BillingService:
    def __init__(self, repo: SystemRepo, directory: TierDirectory, provider: PaymentProvider):
        self.repo = repo
        self.directory = directory
        self.provider = provider

    def get_or_create_customer(self, user_id: str, email: str) -> str:
        profile = self.repo.get_profile(user_id)
        if profile and profile.get("stripe_customer_id"):
            return profile["stripe_customer_id"]
        self.repo.ensure_profile(user_id, email)
        customer_id = self.provider.create_customer(email, user_id)
        if not self.repo.set_stripe_customer_id(user_id, customer_id):
            # another request stored one first; keep theirs
            profile = self.repo.get_profile(user_id)
            return profile["stripe_customer_id"]
        logger.info("billing customer created user=%s", user_id)
        return customer_id

    def create_checkout_session(
        self,
        user_id: str,
        email: str,
        tier_id: str,
        billing_cycle: str,
        success_url: str | None = None,
        cancel_url: str | None = None,
    ) -> str:
        if billing_cycle not in BILLING_CYCLES:
            raise ValidationError("billing_cycle must be monthly or yearly")
        tier = self.directory.get_tier_by_id(tier_id)
        if not tier or not tier["is_active"]:
            raise NotFoundError("Tier not found")
        price_id = tier["stripe_price_id_monthly"] if billing_cycle == "monthly" else tier["stripe_price_id_yearly"]
        if not price_id:
            raise ValidationError(f"No price configured for {tier['name']} {billing_cycle}")

        customer_id = self.get_or_create_customer(user_id, email)
        session = self.provider.create_checkout_session(
            CheckoutSessionRequest(
                customer_id=customer_id,
                price_id=price_id,
                user_id=user_id,
                tier_id=tier_id,
                billing_cycle=billing_cycle,
                success_url=success_url or default_success_url(),
                cancel_url=cancel_url or default_cancel_url(),
            )
        )
        return session.checkout_url

    def create_portal_session(self, user_id: str, return_url: str | None = None) -> str:
        profile = self.repo.get_profile(user_id)
        if not profile or not profile.get("stripe_customer_id"):
            raise ValidationError("No active subscription found")
        return self.provider.create_portal_session(
            profile["stripe_customer_id"],
            return_url or f"{settings.FRONTEND_URL}/settings/billing",
        )

    def get_payment_history(self, user_id: str, reader: UserScopedRepo | None = None, limit: int = 50) -> list[dict]:
        return (reader or self.repo).list_payments(user_id, limit)

    def _set_cancel_at_period_end(self, user_id: str, cancel: bool) -> SubscriptionSnapshot:
        membership = self.directory.require_membership(user_id)
        subscription_id = membership.get("stripe_subscription_id")
        if not subscription_id:
            raise StateConflictError("No active subscription found")
        sub = self.provider.set_cancel_at_period_end(subscription_id, cancel)
        self.directory.update_membership(
            user_id,
            {
                "cancel_at_period_end": sub.cancel_at_period_end,
                "status": map_subscription_status(sub.status),
            },
            {"source": "self_service"},
        )
        return sub

    def cancel_subscription(self, user_id: str) -> SubscriptionSnapshot:
        return self._set_cancel_at_period_end(user_id, True)

    def reactivate_subscription(self, user_id: str) -> SubscriptionSnapshot:
        return self._set_cancel_at_period_end(user_id, False)
