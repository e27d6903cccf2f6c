from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session

from creator_studio.config import Settings
from creator_studio.db import get_db
from creator_studio.deps import get_identity, known_provider
from creator_studio.identity import IdentityService
from creator_studio.sessions import SessionUser, clear_session_cookie, get_optional_user, get_settings, set_session_cookie

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/session")
def current_session(user: SessionUser | None = Depends(get_optional_user)) -> dict:
    return {"user": user.to_dict() if user else None}


@router.post("/logout")
def logout() -> JSONResponse:
    response = JSONResponse(content={"success": True})
    clear_session_cookie(response)
    return response


@router.get("/{provider}")
def start_login(
    provider: str = Depends(known_provider),
    identity: IdentityService = Depends(get_identity),
) -> RedirectResponse:
    return RedirectResponse(url=identity.authorize_url(provider), status_code=302)


@router.get("/{provider}/callback")
def login_callback(
    provider: str = Depends(known_provider),
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    identity: IdentityService = Depends(get_identity),
    session: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> RedirectResponse:
    user, target = identity.complete_login(session, provider, code, state, error)
    response = RedirectResponse(url=target, status_code=302)
    if user is not None:
        set_session_cookie(response, user, settings)
    return response


__all__ = ["router"]
