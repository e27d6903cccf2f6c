from __future__ import annotations

import logging
import time
from typing import Callable
from urllib.parse import urlsplit

from sqlalchemy.orm import Session

from creator_studio.connections import ConnectionManager
from creator_studio.errors import InvalidInput, RemoteRejected
from creator_studio.graph_client import GraphClient

logger = logging.getLogger("creator-studio")

PUBLISH_ATTEMPTS = 5
PUBLISH_RETRY_DELAY = 2.0


def validate_image_url(image_url: str | None) -> str:
    cleaned = (image_url or "").strip()
    if not cleaned:
        raise InvalidInput("imageUrl is required and must be a public URL")
    try:
        parts = urlsplit(cleaned)
    except ValueError as exc:
        raise InvalidInput("imageUrl must be a valid URL") from exc
    if not parts.scheme or not parts.netloc:
        raise InvalidInput("imageUrl must be a valid URL")
    if parts.scheme.lower() not in {"http", "https"}:
        raise InvalidInput("imageUrl must use http or https")
    return cleaned


class PublishWorkflow:
    """Two-phase Content Publishing: create a media container, then publish it.

    The container is processed asynchronously by Instagram, so the publish
    call is retried a fixed number of times with a fixed delay.
    """

    def __init__(
        self,
        connections: ConnectionManager,
        graph: GraphClient,
        sleep: Callable[[float], None] = time.sleep,
        attempts: int = PUBLISH_ATTEMPTS,
        delay: float = PUBLISH_RETRY_DELAY,
    ) -> None:
        self.connections = connections
        self.graph = graph
        self.sleep = sleep
        self.attempts = attempts
        self.delay = delay

    def publish(
        self,
        session: Session,
        user_id: int,
        image_url: str | None,
        caption: str | None = None,
        platform: str = "instagram",
    ) -> str:
        url = validate_image_url(image_url)
        credentials = self.connections.usable_credentials(session, user_id, platform)
        container_id = self.create_container(credentials.external_id, url, caption, credentials.access_token)
        media_id = self.publish_container(credentials.external_id, container_id, credentials.access_token)
        logger.info("publish_success user_id=%s platform=%s media_id=%s", user_id, platform, media_id)
        return media_id

    def create_container(self, external_id: str, image_url: str, caption: str | None, token: str) -> str:
        result = self.graph.create_image_container(external_id, image_url, caption, token)
        if not result.ok:
            raise RemoteRejected(result.error, provider_status=result.status_code)
        return str(result.json["id"])

    def publish_container(self, external_id: str, container_id: str, token: str) -> str:
        last_error: str | None = None
        last_status: int | None = None
        for attempt in range(1, self.attempts + 1):
            result = self.graph.publish_container(external_id, container_id, token)
            if result.ok:
                return str(result.json["id"])
            last_error, last_status = result.error, result.status_code
            logger.warning(
                "publish_attempt_failed attempt=%s container_id=%s error=%s", attempt, container_id, last_error
            )
            if attempt < self.attempts:
                self.sleep(self.delay)
        raise RemoteRejected(last_error or "Publish failed", provider_status=last_status)


__all__ = ["PUBLISH_ATTEMPTS", "PUBLISH_RETRY_DELAY", "PublishWorkflow", "validate_image_url"]
