import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from memberbase.api.deps import (
    get_billing,
    get_current_identity,
    get_payment_provider,
    get_reconciler,
    get_user_repo,
)
from memberbase.db.repositories import UserScopedRepo
from memberbase.db.session import get_db
from memberbase.schemas.billing import (
    CheckoutSessionIn,
    CheckoutSessionOut,
    PaymentOut,
    PortalSessionIn,
    PortalSessionOut,
    SubscriptionOut,
    WebhookAckOut,
)
from memberbase.schemas.common import ApiResponse, ok
from memberbase.services.auth_provider import Identity
from memberbase.services.billing import BillingService
from memberbase.services.billing_provider import PaymentProvider
from memberbase.services.webhooks import BillingReconciler

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/create-checkout-session", response_model=ApiResponse[CheckoutSessionOut])
def create_checkout_session(
    payload: CheckoutSessionIn,
    current: Identity = Depends(get_current_identity),
    billing: BillingService = Depends(get_billing),
    db: Session = Depends(get_db),
):
    url = billing.create_checkout_session(
        current.id,
        current.email,
        payload.tier_id,
        payload.billing_cycle,
        payload.success_url,
        payload.cancel_url,
    )
    db.commit()
    return ok({"checkout_url": url})


@router.post("/create-portal-session", response_model=ApiResponse[PortalSessionOut])
def create_portal_session(
    payload: PortalSessionIn | None = None,
    current: Identity = Depends(get_current_identity),
    billing: BillingService = Depends(get_billing),
):
    url = billing.create_portal_session(current.id, payload.return_url if payload else None)
    return ok({"portal_url": url})


@router.get("/payment-history", response_model=ApiResponse[list[PaymentOut]])
def payment_history(
    current: Identity = Depends(get_current_identity),
    reader: UserScopedRepo = Depends(get_user_repo),
    billing: BillingService = Depends(get_billing),
):
    return ok(billing.get_payment_history(current.id, reader))


@router.post("/subscription/cancel", response_model=ApiResponse[SubscriptionOut])
def cancel_subscription(
    current: Identity = Depends(get_current_identity),
    billing: BillingService = Depends(get_billing),
    db: Session = Depends(get_db),
):
    sub = billing.cancel_subscription(current.id)
    db.commit()
    return ok(
        {
            "id": sub.id,
            "status": sub.status,
            "cancel_at_period_end": sub.cancel_at_period_end,
            "current_period_end": sub.current_period_end,
        },
        "Subscription will cancel at the end of the current period",
    )


@router.post("/subscription/reactivate", response_model=ApiResponse[SubscriptionOut])
def reactivate_subscription(
    current: Identity = Depends(get_current_identity),
    billing: BillingService = Depends(get_billing),
    db: Session = Depends(get_db),
):
    sub = billing.reactivate_subscription(current.id)
    db.commit()
    return ok(
        {
            "id": sub.id,
            "status": sub.status,
            "cancel_at_period_end": sub.cancel_at_period_end,
            "current_period_end": sub.current_period_end,
        },
        "Subscription reactivated",
    )


@router.post("/webhook", response_model=ApiResponse[WebhookAckOut])
async def webhook(
    request: Request,
    provider: PaymentProvider = Depends(get_payment_provider),
    reconciler: BillingReconciler = Depends(get_reconciler),
    db: Session = Depends(get_db),
):
    raw = await request.body()
    event = provider.verify_webhook(raw, request.headers.get("stripe-signature"))
    try:
        outcome = await run_in_threadpool(reconciler.process_event, event)
    except Exception:
        # keep the logged failure so the retry is visible, then let the provider retry
        await run_in_threadpool(db.commit)
        raise
    await run_in_threadpool(db.commit)
    return ok(
        {
            "received": True,
            "event_id": outcome.event_id,
            "duplicate": outcome.duplicate,
            "processed": outcome.processed,
        }
    )
