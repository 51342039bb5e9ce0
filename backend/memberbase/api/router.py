from fastapi import APIRouter
from memberbase.modules.admin import api as admin
from memberbase.modules.auth import api as auth
from memberbase.modules.billing import api as billing
from memberbase.modules.contact import api as contact
from memberbase.modules.gated import api as gated
from memberbase.modules.membership import api as membership
from memberbase.modules.profile import api as profile

router = APIRouter()
router.include_router(auth.router, prefix="/auth", tags=["auth"])
router.include_router(profile.router, prefix="/profile", tags=["profile"])
router.include_router(membership.router, prefix="/membership", tags=["membership"])
router.include_router(billing.router, prefix="/billing", tags=["billing"])
router.include_router(admin.router, prefix="/admin", tags=["admin"])
router.include_router(gated.router, prefix="/gated", tags=["gated"])
router.include_router(contact.router, prefix="/contact", tags=["contact"])
