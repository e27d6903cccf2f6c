from __future__ import annotations

import logging
import secrets
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from fastapi import Depends, HTTPException, Request, Response
from jose import JWTError, jwt

from creator_studio.config import Settings
from creator_studio.errors import Unauthenticated
from creator_studio.models import Role, User

logger = logging.getLogger("creator-studio")

COOKIE_NAME = "creator-studio-session"
ALGORITHM = "HS256"
SESSION_TTL = timedelta(days=7)
STATE_TTL = timedelta(minutes=10)


@dataclass(frozen=True)
class SessionUser:
    id: int
    email: str
    name: str
    role: str
    avatar: str | None = None

    @classmethod
    def from_user(cls, user: User) -> "SessionUser":
        role = user.role.value if isinstance(user.role, Role) else str(user.role)
        return cls(id=user.id, email=user.email, name=user.name, role=role, avatar=user.avatar)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def create_session_token(user: SessionUser, secret: str, now: datetime | None = None) -> str:
    issued = now or datetime.now(timezone.utc)
    claims = {**user.to_dict(), "iat": issued, "exp": issued + SESSION_TTL}
    return jwt.encode(claims, secret, algorithm=ALGORITHM)


def verify_session_token(token: str, secret: str) -> SessionUser | None:
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError:
        return None
    try:
        return SessionUser(
            id=int(payload["id"]),
            email=str(payload["email"]),
            name=str(payload["name"]),
            role=str(payload["role"]),
            avatar=payload.get("avatar"),
        )
    except (KeyError, TypeError, ValueError):
        logger.warning("session_invalid reason=malformed_payload")
        return None


def set_session_cookie(response: Response, user: SessionUser, settings: Settings) -> None:
    response.set_cookie(
        COOKIE_NAME,
        create_session_token(user, settings.session_secret),
        max_age=int(SESSION_TTL.total_seconds()),
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(COOKIE_NAME, path="/")


def sign_state(secret: str, purpose: str, target: str, user_id: int | None = None) -> str:
    """Signed, short-lived OAuth ``state`` value bound to a purpose and target."""
    now = datetime.now(timezone.utc)
    claims: dict[str, Any] = {
        "purpose": purpose,
        "target": target,
        "nonce": secrets.token_urlsafe(8),
        "exp": now + STATE_TTL,
    }
    if user_id is not None:
        claims["uid"] = user_id
    return jwt.encode(claims, secret, algorithm=ALGORITHM)


def verify_state(
    state: str | None,
    secret: str,
    purpose: str,
    target: str,
    user_id: int | None = None,
) -> bool:
    if not state:
        return False
    try:
        claims = jwt.decode(state, secret, algorithms=[ALGORITHM])
    except JWTError:
        return False
    if claims.get("purpose") != purpose or claims.get("target") != target:
        return False
    if user_id is not None and claims.get("uid") != user_id:
        return False
    return True


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_optional_user(request: Request, settings: Settings = Depends(get_settings)) -> SessionUser | None:
    token = request.cookies.get(COOKIE_NAME)
    if not token:
        return None
    return verify_session_token(token, settings.session_secret)


def require_user(user: SessionUser | None = Depends(get_optional_user)) -> SessionUser:
    if user is None:
        raise Unauthenticated()
    return user


def require_role(*roles: Role) -> Callable[[SessionUser], SessionUser]:
    allowed = {role.value for role in roles}

    def dependency(user: SessionUser = Depends(require_user)) -> SessionUser:
        # role comes from the signed session, no database lookup
        if user.role not in allowed:
            raise HTTPException(status_code=403, detail="Forbidden")
        return user

    return dependency


__all__ = [
    "COOKIE_NAME",
    "SessionUser",
    "clear_session_cookie",
    "create_session_token",
    "get_optional_user",
    "get_settings",
    "require_role",
    "require_user",
    "set_session_cookie",
    "sign_state",
    "verify_session_token",
    "verify_state",
]
