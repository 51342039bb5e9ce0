from pydantic import BaseModel

from memberbase.schemas.membership import MembershipOut


class MeOut(BaseModel):
    id: str
    email: str
    membership: MembershipOut | None = None
    is_admin: bool = False
