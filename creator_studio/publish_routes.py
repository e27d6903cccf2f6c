from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from creator_studio.connections import ConnectionManager
from creator_studio.db import get_db
from creator_studio.deps import get_connections, get_publisher, known_platform
from creator_studio.errors import RemoteRejected, Unauthenticated, WorkflowError
from creator_studio.publishing import PublishWorkflow, validate_image_url
from creator_studio.sessions import SessionUser, get_optional_user, require_user

logger = logging.getLogger("creator-studio")

router = APIRouter(tags=["publish"])


class PublishRequest(BaseModel):
    imageUrl: str | None = None
    url: str | None = None
    caption: str | None = None


@router.post("/publish/{platform}")
def publish(
    body: PublishRequest,
    platform: str = Depends(known_platform),
    user: SessionUser | None = Depends(get_optional_user),
    publisher: PublishWorkflow = Depends(get_publisher),
    session: Session = Depends(get_db),
) -> JSONResponse:
    image_url = body.imageUrl if body.imageUrl is not None else body.url
    try:
        validate_image_url(image_url)
        if user is None:
            raise Unauthenticated(f"Sign in to publish to {platform.capitalize()}")
        media_id = publisher.publish(session, user.id, image_url, body.caption, platform=platform)
    except WorkflowError as exc:
        logger.warning("publish_fail platform=%s code=%s message=%s", platform, exc.code, exc.message)
        raise
    except Exception:  # noqa: BLE001
        logger.exception("publish_fail platform=%s code=unexpected", platform)
        return JSONResponse(content={"error": f"Failed to publish to {platform.capitalize()}"}, status_code=500)
    return JSONResponse(
        content={
            "success": True,
            "mediaId": media_id,
            "message": f"Post published to {platform.capitalize()}",
        }
    )


@router.get("/instagram/profile")
def instagram_profile(
    user: SessionUser = Depends(require_user),
    connections: ConnectionManager = Depends(get_connections),
    session: Session = Depends(get_db),
) -> JSONResponse:
    credentials = connections.usable_credentials(session, user.id, "instagram")
    result = connections.graph.fetch_instagram_profile(credentials.access_token)
    if not result.ok:
        raise RemoteRejected(f"Instagram API error: {result.error}", provider_status=400)
    return JSONResponse(content={"profile": result.json})


__all__ = ["router"]
