import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from memberbase.api.deps import get_auth_provider, get_current_identity, get_system_repo
from memberbase.core.errors import NotFoundError
from memberbase.db.repositories import SystemRepo
from memberbase.db.session import get_db
from memberbase.schemas.common import ApiResponse, ok
from memberbase.schemas.profile import ProfileOut, ProfileUpdateIn
from memberbase.services.auth_provider import AuthProvider, Identity

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=ApiResponse[ProfileOut])
def get_profile(
    identity: Identity = Depends(get_current_identity),
    repo: SystemRepo = Depends(get_system_repo),
    db: Session = Depends(get_db),
):
    repo.ensure_profile(identity.id, identity.email)
    db.commit()
    return ok(repo.get_profile(identity.id))


@router.put("", response_model=ApiResponse[ProfileOut])
def update_profile(
    payload: ProfileUpdateIn,
    identity: Identity = Depends(get_current_identity),
    repo: SystemRepo = Depends(get_system_repo),
    db: Session = Depends(get_db),
):
    repo.ensure_profile(identity.id, identity.email)
    profile = repo.update_profile(identity.id, payload.model_dump(exclude_unset=True))
    if not profile:
        raise NotFoundError("Profile not found")
    db.commit()
    return ok(profile, "Profile updated")


@router.delete("", response_model=ApiResponse[None])
def delete_profile(
    identity: Identity = Depends(get_current_identity),
    repo: SystemRepo = Depends(get_system_repo),
    auth: AuthProvider = Depends(get_auth_provider),
    db: Session = Depends(get_db),
):
    # local rows go first; the commit waits until the hosted account is gone
    if not repo.delete_profile(identity.id):
        raise NotFoundError("Profile not found")
    auth.delete_user(identity.id)
    db.commit()
    logger.info("account deleted user=%s", identity.id)
    return ok(message="Account deleted successfully")
