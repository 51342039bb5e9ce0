"""Per-request access checks. Each returns a FastAPI dependency that resolves
to the caller's identity, so gates compose by stacking dependencies."""

import logging

from fastapi import Depends

from memberbase.api.deps import (
    get_current_identity,
    get_directory,
    get_task_queue,
    get_usage_engine,
    get_usage_incrementer,
)
from memberbase.core.config import settings
from memberbase.core.errors import AccessDeniedError, QuotaExceededError
from memberbase.services.auth_provider import Identity
from memberbase.services.tasks import TaskQueue
from memberbase.services.tiers import ACCESS_STATUSES, TierDirectory
from memberbase.services.usage import UsageEngine

logger = logging.getLogger(__name__)


def require_feature(feature_key: str):
    def dependency(
        identity: Identity = Depends(get_current_identity),
        directory: TierDirectory = Depends(get_directory),
    ) -> Identity:
        try:
            allowed = directory.user_has_feature(identity.id, feature_key)
        except Exception:
            logger.exception("feature check failed user=%s feature=%s; allowing", identity.id, feature_key)
            allowed = True
        if not allowed:
            raise AccessDeniedError(
                f"Feature '{feature_key}' is not available on your plan",
                code="FEATURE_NOT_AVAILABLE",
                details={"feature": feature_key},
                upgrade_url=settings.UPGRADE_URL,
            )
        return identity

    return dependency


def enforce_limit(feature_key: str, auto_increment: bool = True):
    def dependency(
        identity: Identity = Depends(get_current_identity),
        usage: UsageEngine = Depends(get_usage_engine),
        tasks: TaskQueue = Depends(get_task_queue),
        incrementer=Depends(get_usage_incrementer),
    ) -> Identity:
        try:
            allowed = usage.can_use(identity.id, feature_key)
        except Exception:
            # a broken meter must not take the feature down with it
            logger.exception("usage check failed user=%s feature=%s; allowing", identity.id, feature_key)
            allowed = True
        if not allowed:
            raise QuotaExceededError(
                f"Usage limit reached for '{feature_key}'",
                details={"feature": feature_key},
                upgrade_url=settings.UPGRADE_URL,
            )
        if auto_increment:
            tasks.enqueue(f"usage_increment:{feature_key}", incrementer, identity.id, feature_key, 1)
        return identity

    return dependency


def require_tier(*tier_names: str):
    allowed = set(tier_names)

    def dependency(
        identity: Identity = Depends(get_current_identity),
        directory: TierDirectory = Depends(get_directory),
    ) -> Identity:
        membership = directory.get_user_membership(identity.id)
        if not membership or membership["tier_name"] not in allowed:
            raise AccessDeniedError(
                "Your plan does not include this resource",
                code="TIER_REQUIRED",
                details={
                    "required_tiers": sorted(allowed),
                    "current_tier": membership["tier_name"] if membership else None,
                },
                upgrade_url=settings.UPGRADE_URL,
            )
        if membership["status"] not in ACCESS_STATUSES:
            raise AccessDeniedError(
                f"Membership is {membership['status']}",
                code="MEMBERSHIP_INACTIVE",
                upgrade_url=settings.UPGRADE_URL,
            )
        return identity

    return dependency
