from datetime import datetime, timezone

from jose import jwt

from memberbase.core.config import settings

ALGO = "HS256"

def now_utc() -> datetime:
    return datetime.now(timezone.utc)

def decode_access_token(token: str) -> dict:
    # Tokens are minted by the auth provider; we only check signature, expiry and audience.
    return jwt.decode(
        token,
        settings.AUTH_JWT_SECRET,
        algorithms=[ALGO],
        audience=settings.AUTH_JWT_AUDIENCE,
    )
