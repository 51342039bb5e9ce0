"""Sample routes behind each kind of access gate."""

from fastapi import APIRouter, Depends

from memberbase.api.gates import enforce_limit, require_feature, require_tier
from memberbase.schemas.common import ApiResponse, ok
from memberbase.services.auth_provider import Identity

router = APIRouter()


@router.get("/free-feature", response_model=ApiResponse[dict])
def free_feature(identity: Identity = Depends(require_tier("free", "premium", "pro", "trial"))):
    return ok({"feature": "free", "user_id": identity.id}, "Free feature accessed")


@router.get("/premium-feature", response_model=ApiResponse[dict])
def premium_feature(identity: Identity = Depends(require_tier("premium", "pro", "trial"))):
    return ok({"feature": "premium", "user_id": identity.id}, "Premium feature accessed")


@router.get("/pro-feature", response_model=ApiResponse[dict])
def pro_feature(identity: Identity = Depends(require_tier("pro", "trial"))):
    return ok({"feature": "pro", "user_id": identity.id}, "Pro feature accessed")


@router.get("/analytics", response_model=ApiResponse[dict])
def analytics(identity: Identity = Depends(require_feature("analytics_dashboard"))):
    return ok({"feature": "analytics_dashboard", "user_id": identity.id}, "Analytics dashboard accessed")


@router.post("/integrations/call", response_model=ApiResponse[dict])
def integrations_call(identity: Identity = Depends(enforce_limit("api_integrations"))):
    return ok({"feature": "api_integrations", "user_id": identity.id}, "Integration call accepted")
