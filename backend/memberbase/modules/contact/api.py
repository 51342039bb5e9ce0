import logging

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from memberbase.api.deps import get_system_repo
from memberbase.api.rate_limit import limiter
from memberbase.core.config import settings
from memberbase.db.repositories import SystemRepo
from memberbase.db.session import get_db
from memberbase.schemas.common import ApiResponse, ok
from memberbase.schemas.contact import ContactIn

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=ApiResponse[None])
@limiter.limit(settings.CONTACT_RATE_LIMIT)
def submit_contact(
    request: Request,
    response: Response,
    payload: ContactIn,
    repo: SystemRepo = Depends(get_system_repo),
    db: Session = Depends(get_db),
):
    values = payload.model_dump()
    values["ip_address"] = request.client.host if request.client else None
    values["user_agent"] = request.headers.get("user-agent")
    submission = repo.create_contact_submission(values)
    db.commit()
    logger.info("contact submission stored id=%s subject=%r", submission["id"], submission["subject"])
    return ok(message="Thank you for your message. We'll get back to you soon!")
