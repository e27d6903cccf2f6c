from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from creator_studio.connections import ConnectionManager
from creator_studio.db import get_db
from creator_studio.deps import get_connections, known_platform
from creator_studio.errors import Unauthenticated
from creator_studio.sessions import SessionUser, get_optional_user, require_user

router = APIRouter(tags=["connections"])


@router.get("/connect/{platform}")
def initiate_connect(
    platform: str = Depends(known_platform),
    user: SessionUser | None = Depends(get_optional_user),
    connections: ConnectionManager = Depends(get_connections),
) -> RedirectResponse:
    try:
        url = connections.initiate_connect(user, platform)
    except Unauthenticated as exc:
        return RedirectResponse(url=connections.app_url("/login", error=exc.code), status_code=302)
    return RedirectResponse(url=url, status_code=302)


@router.get("/connect/{platform}/callback")
def connect_callback(
    platform: str = Depends(known_platform),
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    user: SessionUser | None = Depends(get_optional_user),
    connections: ConnectionManager = Depends(get_connections),
    session: Session = Depends(get_db),
) -> RedirectResponse:
    target = connections.handle_callback(session, user, platform, code, state, error)
    return RedirectResponse(url=target, status_code=302)


@router.get("/connections")
def connection_status(
    user: SessionUser | None = Depends(get_optional_user),
    connections: ConnectionManager = Depends(get_connections),
    session: Session = Depends(get_db),
) -> dict[str, bool]:
    return connections.connection_status(session, user.id if user else None)


@router.post("/connections/{platform}/disconnect")
def disconnect(
    platform: str = Depends(known_platform),
    user: SessionUser = Depends(require_user),
    connections: ConnectionManager = Depends(get_connections),
    session: Session = Depends(get_db),
) -> dict:
    connections.disconnect(session, user.id, platform)
    return {"success": True, "message": f"{platform.capitalize()} disconnected"}


__all__ = ["router"]
