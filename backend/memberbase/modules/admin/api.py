import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from memberbase.api.deps import (
    get_directory,
    get_system_repo,
    get_trials,
    get_usage_engine,
    require_admin,
    require_super_admin,
)
from memberbase.core.errors import NotFoundError, StateConflictError
from memberbase.db.repositories import SystemRepo
from memberbase.db.session import get_db
from memberbase.schemas.admin import (
    AdminCreateIn,
    AdminOut,
    ExpireTrialsOut,
    FeatureCreateIn,
    FeatureUpdateIn,
    ResetUsageOut,
    TierCreateIn,
    TierFeatureIn,
    TierUpdateIn,
    UserTierOverrideIn,
)
from memberbase.schemas.common import ApiResponse, ok
from memberbase.schemas.membership import FeatureOut, MembershipOut, TierFeatureOut, TierOut, UsageSummaryOut
from memberbase.services.auth_provider import Identity
from memberbase.services.feature_values import parse_feature_value
from memberbase.services.tiers import TierDirectory, resolve_binding
from memberbase.services.trial import TrialStateMachine
from memberbase.services.usage import UsageEngine

logger = logging.getLogger(__name__)

router = APIRouter()


def _tier_or_404(repo: SystemRepo, tier_id: str) -> dict:
    tier = repo.get_tier(tier_id)
    if not tier:
        raise NotFoundError("Tier not found")
    return tier


def _feature_or_404(repo: SystemRepo, feature_id: str) -> dict:
    feature = repo.get_feature(feature_id)
    if not feature:
        raise NotFoundError("Feature not found")
    return feature


@router.get("/tiers", response_model=ApiResponse[list[TierOut]])
def list_tiers(admin: Identity = Depends(require_admin), repo: SystemRepo = Depends(get_system_repo)):
    return ok(repo.list_tiers(include_inactive=True))


@router.post("/tiers", response_model=ApiResponse[TierOut], status_code=201)
def create_tier(
    payload: TierCreateIn,
    admin: Identity = Depends(require_admin),
    repo: SystemRepo = Depends(get_system_repo),
    db: Session = Depends(get_db),
):
    if repo.get_tier_by_name(payload.name):
        raise StateConflictError(f"Tier '{payload.name}' already exists")
    tier = repo.create_tier(payload.model_dump())
    db.commit()
    return ok(tier, "Tier created")


@router.put("/tiers/{tier_id}", response_model=ApiResponse[TierOut])
def update_tier(
    tier_id: str,
    payload: TierUpdateIn,
    admin: Identity = Depends(require_admin),
    repo: SystemRepo = Depends(get_system_repo),
    db: Session = Depends(get_db),
):
    _tier_or_404(repo, tier_id)
    tier = repo.update_tier(tier_id, payload.model_dump(exclude_unset=True))
    db.commit()
    return ok(tier, "Tier updated")


@router.delete("/tiers/{tier_id}", response_model=ApiResponse[TierOut])
def deactivate_tier(
    tier_id: str,
    admin: Identity = Depends(require_admin),
    repo: SystemRepo = Depends(get_system_repo),
    db: Session = Depends(get_db),
):
    # Memberships may still point at it; tiers are never deleted.
    _tier_or_404(repo, tier_id)
    tier = repo.update_tier(tier_id, {"is_active": False})
    db.commit()
    return ok(tier, "Tier deactivated")


@router.get("/tiers/{tier_id}/features", response_model=ApiResponse[list[TierFeatureOut]])
def list_tier_features(
    tier_id: str,
    admin: Identity = Depends(require_admin),
    repo: SystemRepo = Depends(get_system_repo),
    directory: TierDirectory = Depends(get_directory),
):
    _tier_or_404(repo, tier_id)
    return ok(directory.get_tier_features(tier_id))


@router.put("/tiers/{tier_id}/features/{feature_id}", response_model=ApiResponse[TierFeatureOut])
def bind_tier_feature(
    tier_id: str,
    feature_id: str,
    payload: TierFeatureIn,
    admin: Identity = Depends(require_admin),
    repo: SystemRepo = Depends(get_system_repo),
    db: Session = Depends(get_db),
):
    _tier_or_404(repo, tier_id)
    feature = _feature_or_404(repo, feature_id)
    value = parse_feature_value(feature["feature_type"], payload.value)
    period_type = payload.period_type or ("lifetime" if feature["feature_type"] == "limit" else "none")
    row = repo.upsert_tier_feature(tier_id, feature_id, value.to_json(), period_type)
    db.commit()
    return ok(resolve_binding(row), "Tier feature saved")


@router.delete("/tiers/{tier_id}/features/{feature_id}", response_model=ApiResponse[None])
def unbind_tier_feature(
    tier_id: str,
    feature_id: str,
    admin: Identity = Depends(require_admin),
    repo: SystemRepo = Depends(get_system_repo),
    db: Session = Depends(get_db),
):
    if not repo.delete_tier_feature(tier_id, feature_id):
        raise NotFoundError("Tier feature not found")
    db.commit()
    return ok(message="Tier feature removed")


@router.get("/features", response_model=ApiResponse[list[FeatureOut]])
def list_features(admin: Identity = Depends(require_admin), repo: SystemRepo = Depends(get_system_repo)):
    return ok(repo.list_features(include_inactive=True))


@router.post("/features", response_model=ApiResponse[FeatureOut], status_code=201)
def create_feature(
    payload: FeatureCreateIn,
    admin: Identity = Depends(require_admin),
    repo: SystemRepo = Depends(get_system_repo),
    db: Session = Depends(get_db),
):
    values = payload.model_dump()
    values["default_value"] = parse_feature_value(payload.feature_type, payload.default_value).to_json()
    feature = repo.create_feature(values)
    db.commit()
    return ok(feature, "Feature created")


@router.put("/features/{feature_id}", response_model=ApiResponse[FeatureOut])
def update_feature(
    feature_id: str,
    payload: FeatureUpdateIn,
    admin: Identity = Depends(require_admin),
    repo: SystemRepo = Depends(get_system_repo),
    db: Session = Depends(get_db),
):
    current = _feature_or_404(repo, feature_id)
    values = payload.model_dump(exclude_unset=True)
    if values.get("default_value") is not None:
        values["default_value"] = parse_feature_value(current["feature_type"], values["default_value"]).to_json()
    feature = repo.update_feature(feature_id, values)
    db.commit()
    return ok(feature, "Feature updated")


@router.delete("/features/{feature_id}", response_model=ApiResponse[FeatureOut])
def deactivate_feature(
    feature_id: str,
    admin: Identity = Depends(require_admin),
    repo: SystemRepo = Depends(get_system_repo),
    db: Session = Depends(get_db),
):
    _feature_or_404(repo, feature_id)
    feature = repo.update_feature(feature_id, {"is_active": False})
    db.commit()
    return ok(feature, "Feature deactivated")


@router.post("/users/{user_id}/tier", response_model=ApiResponse[MembershipOut])
def override_user_tier(
    user_id: str,
    payload: UserTierOverrideIn,
    admin: Identity = Depends(require_admin),
    directory: TierDirectory = Depends(get_directory),
    usage: UsageEngine = Depends(get_usage_engine),
    db: Session = Depends(get_db),
):
    updated = directory.change_tier(user_id, payload.tier_id, payload.billing_cycle, source=f"admin:{admin.id}")
    usage.update_limits_for_tier(user_id, payload.tier_id)
    db.commit()
    return ok(updated, "Tier updated")


@router.get("/users/{user_id}/usage", response_model=ApiResponse[UsageSummaryOut])
def user_usage(
    user_id: str,
    admin: Identity = Depends(require_admin),
    usage: UsageEngine = Depends(get_usage_engine),
    db: Session = Depends(get_db),
):
    summary = usage.get_all_usage(user_id)
    db.commit()
    return ok(asdict(summary))


@router.get("/admins", response_model=ApiResponse[list[AdminOut]])
def list_admins(admin: Identity = Depends(require_admin), repo: SystemRepo = Depends(get_system_repo)):
    return ok(repo.list_admins())


@router.post("/admins", response_model=ApiResponse[AdminOut], status_code=201)
def add_admin(
    payload: AdminCreateIn,
    admin: Identity = Depends(require_super_admin),
    repo: SystemRepo = Depends(get_system_repo),
    db: Session = Depends(get_db),
):
    if not repo.get_profile(payload.user_id):
        raise NotFoundError("User not found")
    created = repo.add_admin(payload.user_id, payload.role, admin.id)
    if not created:
        raise StateConflictError("User is already an admin")
    db.commit()
    logger.info("admin granted user=%s role=%s by=%s", payload.user_id, payload.role, admin.id)
    return ok(created, "Admin user added")


@router.delete("/admins/{user_id}", response_model=ApiResponse[None])
def remove_admin(
    user_id: str,
    admin: Identity = Depends(require_super_admin),
    repo: SystemRepo = Depends(get_system_repo),
    db: Session = Depends(get_db),
):
    if user_id == admin.id:
        raise StateConflictError("Cannot remove yourself as admin")
    if not repo.remove_admin(user_id):
        raise NotFoundError("Admin user not found")
    db.commit()
    logger.info("admin revoked user=%s by=%s", user_id, admin.id)
    return ok(message="Admin user removed")


@router.post("/cron/expire-trials", response_model=ApiResponse[ExpireTrialsOut])
def cron_expire_trials(
    admin: Identity = Depends(require_admin),
    trials: TrialStateMachine = Depends(get_trials),
    db: Session = Depends(get_db),
):
    report = trials.expire_trials()
    db.commit()
    return ok(asdict(report), f"Expired {report.expired} trials")


@router.post("/cron/reset-usage", response_model=ApiResponse[ResetUsageOut])
def cron_reset_usage(
    admin: Identity = Depends(require_admin),
    usage: UsageEngine = Depends(get_usage_engine),
    db: Session = Depends(get_db),
):
    count = usage.reset_periodic_usage()
    db.commit()
    return ok({"reset": count}, f"Reset {count} usage counters")
