from __future__ import annotations

import logging
from dataclasses import dataclass, field
from urllib import error as urlerror
from urllib import request as urlrequest

from jose import JWTError

from memberbase.core.errors import AuthError, UpstreamError
from memberbase.core.security import decode_access_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    id: str
    email: str
    access_token: str
    claims: dict = field(default_factory=dict)


class AuthProvider:
    """Thin client for the hosted auth service. Token issuance stays there."""

    def __init__(self, base_url: str, anon_key: str | None, service_role_key: str | None = None):
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self.service_role_key = service_role_key

    def resolve(self, token: str) -> Identity:
        try:
            claims = decode_access_token(token)
        except JWTError:
            raise AuthError("Invalid or expired token")
        user_id = claims.get("sub")
        if not user_id:
            raise AuthError("Invalid or expired token")
        return Identity(id=user_id, email=claims.get("email") or "", access_token=token, claims=claims)

    def sign_out(self, access_token: str) -> None:
        headers = {"Authorization": f"Bearer {access_token}"}
        if self.anon_key:
            headers["apikey"] = self.anon_key
        # an already revoked session is fine
        self._send("POST", "/auth/v1/logout", headers, ok_statuses=(401, 403, 404), action="Sign-out")

    def delete_user(self, user_id: str) -> None:
        if not self.service_role_key:
            raise UpstreamError("Account deletion is not configured")
        headers = {"Authorization": f"Bearer {self.service_role_key}", "apikey": self.service_role_key}
        self._send("DELETE", f"/auth/v1/admin/users/{user_id}", headers, ok_statuses=(404,), action="Account deletion")

    def _send(self, method: str, path: str, headers: dict, *, ok_statuses: tuple[int, ...], action: str) -> None:
        headers = {**headers, "Content-Type": "application/json"}
        req = urlrequest.Request(url=f"{self.base_url}{path}", method=method, data=b"{}", headers=headers)
        try:
            with urlrequest.urlopen(req, timeout=20):
                pass
        except urlerror.HTTPError as exc:
            if exc.code in ok_statuses:
                return
            logger.error("auth provider %s %s failed status=%s", method, path, exc.code)
            raise UpstreamError(f"{action} failed") from exc
        except urlerror.URLError as exc:
            logger.error("auth provider unreachable: %s", exc)
            raise UpstreamError(f"{action} failed") from exc
