from __future__ import annotations

import logging
import math
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from creator_studio.db import get_db
from creator_studio.models import Role, User
from creator_studio.sessions import SessionUser, require_role

logger = logging.getLogger("creator-studio")

DEFAULT_LIMIT = 10
MAX_LIMIT = 100
SORT_FIELDS = {
    "created_at": User.created_at,
    "updated_at": User.updated_at,
    "name": User.name,
    "email": User.email,
    "role": User.role,
}

require_staff = require_role(Role.ADMIN, Role.SUPER_ADMIN)
require_super_admin = require_role(Role.SUPER_ADMIN)

router = APIRouter(prefix="/users", tags=["users"])


class UserCreate(BaseModel):
    email: str | None = None
    name: str | None = None
    role: str = Role.USER.value
    avatar: str | None = None


class UserUpdate(BaseModel):
    name: str | None = None
    role: str | None = None
    avatar: str | None = None


def _parse_role(value: str) -> Role:
    try:
        return Role(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid role: {value}") from None


def _serialize(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role.value,
        "avatar": user.avatar,
        "provider": user.provider,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


def _get_or_404(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("")
def list_users(
    page: int = Query(default=1),
    limit: int = Query(default=DEFAULT_LIMIT),
    role: str | None = Query(default=None),
    search: str | None = Query(default=None),
    sortBy: str = Query(default="created_at"),
    sortOrder: str = Query(default="desc"),
    session: Session = Depends(get_db),
    _: SessionUser = Depends(require_staff),
) -> dict[str, Any]:
    page = max(1, page)
    limit = min(MAX_LIMIT, max(1, limit))
    filters = []
    if role in {r.value for r in Role}:
        filters.append(User.role == Role(role))
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        filters.append(or_(User.name.ilike(pattern), User.email.ilike(pattern)))

    column = SORT_FIELDS.get(sortBy, User.created_at)
    order = column.asc() if sortOrder.lower() == "asc" else column.desc()
    users = session.execute(
        select(User).where(*filters).order_by(order, User.id).offset((page - 1) * limit).limit(limit)
    ).scalars().all()
    total = session.execute(select(func.count()).select_from(User).where(*filters)).scalar_one()
    total_pages = math.ceil(total / limit)
    return {
        "users": [_serialize(user) for user in users],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": total_pages,
            "hasMore": page < total_pages,
        },
    }


@router.post("")
def create_user(
    body: UserCreate,
    session: Session = Depends(get_db),
    _: SessionUser = Depends(require_super_admin),
) -> JSONResponse:
    if not body.email or not body.name:
        raise HTTPException(status_code=400, detail="Email and name are required")
    user = User(email=body.email.strip(), name=body.name.strip(), role=_parse_role(body.role), avatar=body.avatar)
    session.add(user)
    try:
        session.flush()
    except IntegrityError:
        session.rollback()
        raise HTTPException(status_code=409, detail="User with this email already exists") from None
    logger.info("db_write_success event=create_user user_id=%s", user.id)
    return JSONResponse(content={"user": _serialize(user)}, status_code=201)


@router.get("/{user_id}")
def get_user(
    user_id: int,
    session: Session = Depends(get_db),
    _: SessionUser = Depends(require_staff),
) -> dict[str, Any]:
    return {"user": _serialize(_get_or_404(session, user_id))}


@router.patch("/{user_id}")
def update_user(
    user_id: int,
    body: UserUpdate,
    session: Session = Depends(get_db),
    _: SessionUser = Depends(require_super_admin),
) -> dict[str, Any]:
    user = _get_or_404(session, user_id)
    if body.name is not None:
        user.name = body.name.strip()
    if body.role is not None:
        # takes effect on the user's next sign-in, sessions carry the old role until then
        user.role = _parse_role(body.role)
    if body.avatar is not None:
        user.avatar = body.avatar
    session.flush()
    return {"user": _serialize(user)}


@router.delete("/{user_id}")
def delete_user(
    user_id: int,
    session: Session = Depends(get_db),
    _: SessionUser = Depends(require_super_admin),
) -> dict[str, Any]:
    user = _get_or_404(session, user_id)
    session.delete(user)
    session.flush()
    logger.info("db_write_success event=delete_user user_id=%s", user_id)
    return {"success": True}


__all__ = ["router"]
