from fastapi import APIRouter, Depends

from memberbase.api.deps import get_auth_provider, get_current_identity, get_current_membership, get_system_repo
from memberbase.db.repositories import SystemRepo
from memberbase.schemas.auth import MeOut
from memberbase.schemas.common import ApiResponse, ok
from memberbase.services.auth_provider import AuthProvider, Identity

router = APIRouter()


@router.get("/me", response_model=ApiResponse[MeOut])
def me(
    identity: Identity = Depends(get_current_identity),
    membership: dict = Depends(get_current_membership),
    repo: SystemRepo = Depends(get_system_repo),
):
    return ok(
        {
            "id": identity.id,
            "email": identity.email,
            "membership": membership,
            "is_admin": repo.is_admin(identity.id),
        }
    )


@router.post("/logout", response_model=ApiResponse[None])
def logout(
    identity: Identity = Depends(get_current_identity),
    auth: AuthProvider = Depends(get_auth_provider),
):
    auth.sign_out(identity.access_token)
    return ok(message="Signed out")
