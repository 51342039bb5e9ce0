import logging

from fastapi import BackgroundTasks, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from memberbase.core.config import settings
from memberbase.core.errors import AccessDeniedError, AuthError
from memberbase.db.repositories import SqlSystemRepo, SqlUserScopedRepo, SystemRepo, UserScopedRepo
from memberbase.db.session import SessionLocal, engine, get_db
from memberbase.services.auth_provider import AuthProvider, Identity
from memberbase.services.billing import BillingService
from memberbase.services.billing_provider import PaymentProvider
from memberbase.services.tasks import TaskQueue
from memberbase.services.tiers import TierDirectory
from memberbase.services.trial import TrialStateMachine
from memberbase.services.usage import UsageEngine
from memberbase.services.webhooks import BillingReconciler

logger = logging.getLogger(__name__)

bearer = HTTPBearer(auto_error=False)


def get_auth_provider(request: Request) -> AuthProvider:
    return request.app.state.auth_provider


def get_payment_provider(request: Request) -> PaymentProvider:
    return request.app.state.payment_provider


def get_current_identity(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    auth: AuthProvider = Depends(get_auth_provider),
) -> Identity:
    token = creds.credentials if creds else request.cookies.get(settings.AUTH_COOKIE_NAME)
    if not token:
        raise AuthError("Authentication required")
    return auth.resolve(token)


def get_system_repo(db: Session = Depends(get_db)) -> SystemRepo:
    return SqlSystemRepo(db)


def get_user_repo(identity: Identity = Depends(get_current_identity)) -> UserScopedRepo:
    return SqlUserScopedRepo(engine, identity.claims)


def get_directory(repo: SystemRepo = Depends(get_system_repo)) -> TierDirectory:
    return TierDirectory(repo)


def get_usage_engine(
    repo: SystemRepo = Depends(get_system_repo),
    directory: TierDirectory = Depends(get_directory),
) -> UsageEngine:
    return UsageEngine(repo, directory)


def get_trials(
    repo: SystemRepo = Depends(get_system_repo),
    directory: TierDirectory = Depends(get_directory),
    usage: UsageEngine = Depends(get_usage_engine),
) -> TrialStateMachine:
    return TrialStateMachine(repo, directory, usage)


def get_billing(
    repo: SystemRepo = Depends(get_system_repo),
    directory: TierDirectory = Depends(get_directory),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> BillingService:
    return BillingService(repo, directory, provider)


def get_reconciler(
    repo: SystemRepo = Depends(get_system_repo),
    directory: TierDirectory = Depends(get_directory),
    usage: UsageEngine = Depends(get_usage_engine),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> BillingReconciler:
    return BillingReconciler(repo, directory, usage, provider)


def get_current_membership(
    identity: Identity = Depends(get_current_identity),
    directory: TierDirectory = Depends(get_directory),
    db: Session = Depends(get_db),
) -> dict:
    membership = directory.ensure_membership(identity.id, identity.email)
    db.commit()
    return membership


def require_admin(
    identity: Identity = Depends(get_current_identity),
    repo: SystemRepo = Depends(get_system_repo),
) -> Identity:
    if not repo.is_admin(identity.id):
        raise AccessDeniedError("Admin access required", code="ADMIN_REQUIRED")
    return identity


def get_task_queue(background: BackgroundTasks) -> TaskQueue:
    return TaskQueue(background)


def increment_usage_in_new_session(user_id: str, feature_key: str, amount: int = 1) -> None:
    # Runs after the response; the request session is already closed.
    db = SessionLocal()
    try:
        repo = SqlSystemRepo(db)
        UsageEngine(repo, TierDirectory(repo)).increment(user_id, feature_key, amount)
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_usage_incrementer():
    return increment_usage_in_new_session


def require_super_admin(
    identity: Identity = Depends(get_current_identity),
    repo: SystemRepo = Depends(get_system_repo),
) -> Identity:
    admin = repo.get_admin(identity.id)
    if not admin or admin["role"] != "super_admin":
        raise AccessDeniedError("Super admin access required", code="SUPER_ADMIN_REQUIRED")
    return identity
