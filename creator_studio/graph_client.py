from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from creator_studio.config import Settings

logger = logging.getLogger("creator-studio")

CONNECT_SCOPES = (
    "instagram_basic",
    "instagram_content_publish",
    "pages_show_list",
    "pages_read_engagement",
)


@dataclass
class GraphResponse:
    ok: bool
    status_code: int | None
    json: Any
    error: str | None


@dataclass
class EligiblePage:
    page_id: str
    page_token: str
    instagram_account_id: str


class GraphClient:
    """Meta Graph API calls used by the connect and publish flows.

    Every call returns a ``GraphResponse`` instead of raising, so callers
    decide whether a failure is terminal or can be degraded.
    """

    def __init__(self, settings: Settings, http: httpx.Client) -> None:
        self.settings = settings
        self.http = http

    def _url(self, base: str, path: str) -> str:
        return f"{base}/{self.settings.meta_api_version}/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
        token: str | None = None,
        event: str = "graph_request",
    ) -> GraphResponse:
        headers = {"Authorization": f"Bearer {token}"} if token else None
        try:
            response = self.http.request(method, url, params=params, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("%s_fail status_code=%s error=%s", event, None, exc)
            return GraphResponse(ok=False, status_code=None, json=None, error=str(exc) or exc.__class__.__name__)
        try:
            body: Any = response.json()
        except ValueError:
            body = {"raw": response.text[:500]}
        if response.is_success:
            logger.info("%s_success status_code=%s", event, response.status_code)
            return GraphResponse(ok=True, status_code=response.status_code, json=body, error=None)
        error = _error_message(body) or f"HTTP {response.status_code}"
        logger.warning("%s_fail status_code=%s error=%s", event, response.status_code, error)
        return GraphResponse(ok=False, status_code=response.status_code, json=body, error=error)

    def authorize_url(self, redirect_uri: str, state: str, scopes: tuple[str, ...] = CONNECT_SCOPES) -> str:
        params = {
            "client_id": self.settings.facebook_app_id or "",
            "redirect_uri": redirect_uri,
            "state": state,
            "scope": ",".join(scopes),
        }
        url = httpx.URL(f"https://www.facebook.com/{self.settings.meta_api_version}/dialog/oauth", params=params)
        return str(url)

    def exchange_code(self, code: str, redirect_uri: str) -> GraphResponse:
        result = self._request(
            "GET",
            self._url(self.settings.graph_base_url, "oauth/access_token"),
            params={
                "client_id": self.settings.facebook_app_id,
                "client_secret": self.settings.facebook_app_secret,
                "redirect_uri": redirect_uri,
                "code": code,
            },
            event="oauth_code_exchange",
        )
        return _require_field(result, "access_token", "Failed to get access token")

    def exchange_long_lived(self, short_lived_token: str) -> GraphResponse:
        result = self._request(
            "GET",
            self._url(self.settings.graph_base_url, "oauth/access_token"),
            params={
                "grant_type": "fb_exchange_token",
                "client_id": self.settings.facebook_app_id,
                "client_secret": self.settings.facebook_app_secret,
                "fb_exchange_token": short_lived_token,
            },
            event="oauth_long_lived_exchange",
        )
        return _require_field(result, "access_token", "No long-lived token in response")

    def list_pages(self, user_token: str) -> GraphResponse:
        return self._request(
            "GET",
            self._url(self.settings.graph_base_url, "me/accounts"),
            params={"fields": "id,name,access_token,instagram_business_account"},
            token=user_token,
            event="graph_list_pages",
        )

    def fetch_me(self, user_token: str, fields: str) -> GraphResponse:
        return self._request(
            "GET",
            self._url(self.settings.graph_base_url, "me"),
            params={"fields": fields},
            token=user_token,
            event="graph_fetch_me",
        )

    def fetch_instagram_username(self, instagram_account_id: str, token: str) -> GraphResponse:
        result = self._request(
            "GET",
            self._url(self.settings.instagram_base_url, instagram_account_id),
            params={"fields": "username,profile_picture_url"},
            token=token,
            event="instagram_fetch_username",
        )
        return _require_field(result, "username", "No username in response")

    def fetch_instagram_profile(self, token: str) -> GraphResponse:
        return self._request(
            "GET",
            self._url(self.settings.instagram_base_url, "me"),
            params={"fields": "id,username,account_type,media_count"},
            token=token,
            event="instagram_fetch_profile",
        )

    def create_image_container(
        self,
        instagram_account_id: str,
        image_url: str,
        caption: str | None,
        token: str,
    ) -> GraphResponse:
        payload: dict[str, Any] = {"image_url": image_url}
        if caption:
            payload["caption"] = caption
        result = self._request(
            "POST",
            self._url(self.settings.instagram_base_url, f"{instagram_account_id}/media"),
            token=token,
            payload=payload,
            event="instagram_create_container",
        )
        return _require_field(result, "id", "No container ID in response")

    def publish_container(self, instagram_account_id: str, container_id: str, token: str) -> GraphResponse:
        result = self._request(
            "POST",
            self._url(self.settings.instagram_base_url, f"{instagram_account_id}/media_publish"),
            token=token,
            payload={"creation_id": container_id},
            event="instagram_publish_container",
        )
        return _require_field(result, "id", "No media ID in response")


def find_eligible_page(pages_body: Any) -> EligiblePage | None:
    pages = pages_body.get("data") if isinstance(pages_body, dict) else None
    if not isinstance(pages, list):
        return None
    for page in pages:
        if not isinstance(page, dict):
            continue
        instagram = page.get("instagram_business_account")
        if isinstance(instagram, dict) and instagram.get("id") and page.get("access_token"):
            return EligiblePage(
                page_id=str(page.get("id")),
                page_token=str(page["access_token"]),
                instagram_account_id=str(instagram["id"]),
            )
    return None


def _error_message(body: Any) -> str | None:
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict):
        return error.get("message") or error.get("type")
    if isinstance(error, str):
        return body.get("error_description") or error
    return None


def _require_field(result: GraphResponse, field: str, missing_message: str) -> GraphResponse:
    if not result.ok:
        return result
    if not isinstance(result.json, dict) or not result.json.get(field):
        return GraphResponse(ok=False, status_code=result.status_code, json=result.json, error=missing_message)
    return result


__all__ = ["CONNECT_SCOPES", "EligiblePage", "GraphClient", "GraphResponse", "find_eligible_page"]
