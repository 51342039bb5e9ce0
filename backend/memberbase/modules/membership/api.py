from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from memberbase.api.deps import (
    get_current_membership,
    get_directory,
    get_trials,
    get_usage_engine,
    get_user_repo,
)
from memberbase.core.config import settings
from memberbase.core.errors import NotFoundError
from memberbase.db.repositories import UserScopedRepo
from memberbase.db.session import get_db
from memberbase.schemas.common import ApiResponse, ok
from memberbase.schemas.membership import (
    ChangeTierIn,
    FeatureCheckOut,
    FeatureLimitOut,
    FeatureUsageOut,
    MembershipOut,
    PublicTierOut,
    TierFeatureOut,
    TierOut,
    TierWithFeaturesOut,
    TrialConvertIn,
    TrialStatusOut,
    UsageSummaryOut,
)
from memberbase.services.tiers import TierDirectory
from memberbase.services.trial import TrialStateMachine
from memberbase.services.usage import UsageEngine

router = APIRouter()


@router.get("/public/tiers-with-features", response_model=ApiResponse[list[PublicTierOut]])
def public_tiers_with_features(directory: TierDirectory = Depends(get_directory)):
    return ok(directory.get_public_catalog())


@router.get("/tiers", response_model=ApiResponse[list[TierOut]])
def list_tiers(
    reader: UserScopedRepo = Depends(get_user_repo),
    directory: TierDirectory = Depends(get_directory),
):
    return ok(directory.get_tiers(reader))


@router.get("/tiers/{tier_id}/features", response_model=ApiResponse[list[TierFeatureOut]])
def tier_features(
    tier_id: str,
    reader: UserScopedRepo = Depends(get_user_repo),
    directory: TierDirectory = Depends(get_directory),
):
    return ok(directory.get_tier_features(tier_id, reader))


@router.get("", response_model=ApiResponse[MembershipOut])
def my_membership(membership: dict = Depends(get_current_membership)):
    return ok(membership)


@router.get("/features", response_model=ApiResponse[TierWithFeaturesOut])
def my_features(
    membership: dict = Depends(get_current_membership),
    directory: TierDirectory = Depends(get_directory),
):
    twf = directory.get_user_tier_with_features(membership["user_id"])
    if not twf:
        raise NotFoundError("Membership not found")
    return ok(twf.as_dict())


@router.get("/check-feature/{feature_key}", response_model=ApiResponse[FeatureCheckOut])
def check_feature(
    feature_key: str,
    membership: dict = Depends(get_current_membership),
    directory: TierDirectory = Depends(get_directory),
):
    has = directory.user_has_feature(membership["user_id"], feature_key)
    return ok({"feature_key": feature_key, "has_feature": has})


@router.get("/feature-limit/{feature_key}", response_model=ApiResponse[FeatureLimitOut])
def feature_limit(
    feature_key: str,
    membership: dict = Depends(get_current_membership),
    directory: TierDirectory = Depends(get_directory),
):
    limit = directory.get_feature_limit(membership["user_id"], feature_key)
    return ok({"feature_key": feature_key, "limit": limit})


@router.get("/trial/status", response_model=ApiResponse[TrialStatusOut])
def trial_status(
    membership: dict = Depends(get_current_membership),
    trials: TrialStateMachine = Depends(get_trials),
):
    return ok(asdict(trials.get_trial_status(membership["user_id"])))


@router.post("/trial/start", response_model=ApiResponse[MembershipOut])
def start_trial(
    membership: dict = Depends(get_current_membership),
    trials: TrialStateMachine = Depends(get_trials),
    db: Session = Depends(get_db),
):
    updated = trials.start_trial(membership["user_id"])
    db.commit()
    return ok(updated, f"Trial started. Enjoy {settings.TRIAL_DURATION_DAYS} days of full access.")


@router.post("/trial/convert", response_model=ApiResponse[MembershipOut])
def convert_trial(
    payload: TrialConvertIn,
    membership: dict = Depends(get_current_membership),
    trials: TrialStateMachine = Depends(get_trials),
    db: Session = Depends(get_db),
):
    updated = trials.convert_trial_to_paid(membership["user_id"], payload.tier_id, payload.billing_cycle)
    db.commit()
    return ok(updated, "Trial converted")


@router.post("/change-tier", response_model=ApiResponse[MembershipOut])
def change_tier(
    payload: ChangeTierIn,
    membership: dict = Depends(get_current_membership),
    directory: TierDirectory = Depends(get_directory),
    usage: UsageEngine = Depends(get_usage_engine),
    db: Session = Depends(get_db),
):
    # Paid tiers go through checkout; this shortcut only exists for local work.
    if settings.ENV != "dev":
        raise HTTPException(404, "Not found")
    updated = directory.change_tier(membership["user_id"], payload.tier_id, payload.billing_cycle, source="dev")
    usage.update_limits_for_tier(membership["user_id"], payload.tier_id)
    db.commit()
    return ok(updated, "Tier changed")


@router.get("/usage", response_model=ApiResponse[UsageSummaryOut])
def my_usage(
    membership: dict = Depends(get_current_membership),
    usage: UsageEngine = Depends(get_usage_engine),
    db: Session = Depends(get_db),
):
    summary = usage.get_all_usage(membership["user_id"])
    # rollover may have written
    db.commit()
    return ok(asdict(summary))


@router.get("/usage/{feature_key}", response_model=ApiResponse[FeatureUsageOut])
def my_feature_usage(
    feature_key: str,
    membership: dict = Depends(get_current_membership),
    usage: UsageEngine = Depends(get_usage_engine),
    db: Session = Depends(get_db),
):
    snapshot = usage.get_usage(membership["user_id"], feature_key)
    if snapshot is None:
        raise NotFoundError(f"No usage tracking for feature '{feature_key}'")
    db.commit()
    return ok(asdict(snapshot))
