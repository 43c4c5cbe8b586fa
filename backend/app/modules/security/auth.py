from __future__ import annotations

import hmac

from fastapi import HTTPException, Request, status

from backend.app.config import settings


class AuthContext:
    def __init__(self, actor_id: str, actor_type: str = "user") -> None:
        self.actor_id = actor_id
        self.actor_type = actor_type


def _actor(request: Request, default: str) -> str:
    # the requester named in archive/restore audit entries and job records
    requested_by = request.headers.get("x-requested-by", "").strip()
    return requested_by or default


def require_auth(request: Request) -> AuthContext:
    if not settings.auth_enabled:
        return AuthContext(actor_id=_actor(request, "anonymous"), actor_type="local")

    header = request.headers.get("authorization", "")
    prefix = "Bearer "
    if not header.startswith(prefix):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "code": "AUTH_REQUIRED",
                "message": "Authorization token is required",
                "details": {},
                "retryable": False,
            },
        )

    token = header[len(prefix) :]
    if not settings.auth_token or not hmac.compare_digest(token, settings.auth_token):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "code": "AUTH_FORBIDDEN",
                "message": "Authorization token is invalid",
                "details": {},
                "retryable": False,
            },
        )

    return AuthContext(actor_id=_actor(request, "token_user"), actor_type="token")
