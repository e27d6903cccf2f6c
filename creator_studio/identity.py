from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from creator_studio.config import Settings
from creator_studio.errors import InvalidInput, InvalidState, NotConfigured, RemoteRejected, UserDenied, WorkflowError
from creator_studio.graph_client import GraphClient
from creator_studio.models import Role, User
from creator_studio.sessions import SessionUser, sign_state, verify_state

logger = logging.getLogger("creator-studio")

PROVIDERS = ("google", "facebook")
GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

# login error markers understood by the sign-in page
LOGIN_ERRORS = {
    UserDenied: "oauth_cancelled",
    InvalidInput: "oauth_failed",
    InvalidState: "oauth_error",
    NotConfigured: "oauth_not_configured",
}


@dataclass
class OAuthProfile:
    provider: str
    provider_id: str
    email: str
    name: str
    avatar: str | None = None


class IdentityService:
    def __init__(self, settings: Settings, graph: GraphClient, http: httpx.Client) -> None:
        self.settings = settings
        self.graph = graph
        self.http = http

    def redirect_uri(self, provider: str) -> str:
        return f"{self.settings.public_base_url}/auth/{provider}/callback"

    def _check_configured(self, provider: str) -> None:
        configured = self.settings.google_configured if provider == "google" else self.settings.meta_configured
        if not configured:
            env = "GOOGLE_CLIENT_ID" if provider == "google" else "FACEBOOK_APP_ID"
            raise NotConfigured(f"{provider.capitalize()} OAuth not configured. Set {env} in .env")

    def authorize_url(self, provider: str) -> str:
        self._check_configured(provider)
        state = sign_state(self.settings.session_secret, "login", provider)
        if provider == "google":
            params = {
                "client_id": self.settings.google_client_id,
                "redirect_uri": self.redirect_uri(provider),
                "response_type": "code",
                "scope": "profile email",
                "state": state,
                "access_type": "offline",
                "prompt": "consent",
            }
            return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"
        return self.graph.authorize_url(self.redirect_uri(provider), state, scopes=("email", "public_profile"))

    def complete_login(
        self,
        session: Session,
        provider: str,
        code: str | None,
        state: str | None,
        error: str | None,
    ) -> tuple[SessionUser | None, str]:
        """Finish sign-in. Returns the session user (or None) and the redirect URL."""
        base = self.settings.public_base_url
        try:
            if error:
                raise UserDenied(error)
            if not code:
                raise InvalidInput("Missing authorization code")
            self._check_configured(provider)
            if not verify_state(state, self.settings.session_secret, "login", provider):
                raise InvalidState()
            profile = self.fetch_profile(provider, code)
            user = find_or_create_user(session, profile)
        except WorkflowError as exc:
            marker = LOGIN_ERRORS.get(type(exc), "oauth_error")
            logger.warning("login_fail provider=%s code=%s message=%s", provider, exc.code, exc.message)
            return None, f"{base}/login?{urlencode({'error': marker})}"
        except Exception:  # noqa: BLE001
            logger.exception("login_fail provider=%s code=oauth_error", provider)
            return None, f"{base}/login?{urlencode({'error': 'oauth_error'})}"

        logger.info("login_success provider=%s user_id=%s", provider, user.id)
        session_user = SessionUser.from_user(user)
        if session_user.role == Role.SUPER_ADMIN.value:
            return session_user, f"{base}/admin"
        return session_user, f"{base}/"

    def fetch_profile(self, provider: str, code: str) -> OAuthProfile:
        if provider == "google":
            return self._google_profile(code)
        return self._facebook_profile(code)

    def _google_profile(self, code: str) -> OAuthProfile:
        tokens = self._json(
            "POST",
            GOOGLE_TOKEN_URL,
            data={
                "code": code,
                "client_id": self.settings.google_client_id,
                "client_secret": self.settings.google_client_secret,
                "redirect_uri": self.redirect_uri("google"),
                "grant_type": "authorization_code",
            },
        )
        access_token = tokens.get("access_token")
        if not access_token:
            raise RemoteRejected("Failed to get access token")
        profile = self._json("GET", GOOGLE_USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"})
        if not profile.get("email"):
            raise RemoteRejected("No email in Google profile")
        return OAuthProfile(
            provider="google",
            provider_id=str(profile.get("id") or ""),
            email=str(profile["email"]),
            name=profile.get("name") or profile.get("given_name") or "User",
            avatar=profile.get("picture"),
        )

    def _facebook_profile(self, code: str) -> OAuthProfile:
        exchanged = self.graph.exchange_code(code, self.redirect_uri("facebook"))
        if not exchanged.ok:
            raise RemoteRejected(exchanged.error, provider_status=exchanged.status_code)
        result = self.graph.fetch_me(exchanged.json["access_token"], "id,name,email,picture")
        if not result.ok:
            raise RemoteRejected(result.error, provider_status=result.status_code)
        profile = result.json if isinstance(result.json, dict) else {}
        if not profile.get("email"):
            raise RemoteRejected("No email in Facebook profile")
        picture = profile.get("picture")
        avatar = picture.get("data", {}).get("url") if isinstance(picture, dict) else None
        return OAuthProfile(
            provider="facebook",
            provider_id=str(profile.get("id") or ""),
            email=str(profile["email"]),
            name=profile.get("name") or "User",
            avatar=avatar,
        )

    def _json(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self.http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise RemoteRejected(str(exc) or exc.__class__.__name__) from exc
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not response.is_success:
            logger.warning("identity_request_fail url=%s status_code=%s", url, response.status_code)
            raise RemoteRejected(f"HTTP {response.status_code}", provider_status=response.status_code)
        return body if isinstance(body, dict) else {}


def find_or_create_user(session: Session, profile: OAuthProfile) -> User:
    user = session.execute(select(User).where(User.email == profile.email)).scalar_one_or_none()
    if user is None:
        user = User(
            email=profile.email,
            name=profile.name,
            avatar=profile.avatar,
            provider=profile.provider,
            provider_id=profile.provider_id,
            role=Role.USER,
        )
        session.add(user)
        session.flush()
        logger.info("db_write_success event=create_user user_id=%s provider=%s", user.id, profile.provider)
    elif user.provider != profile.provider:
        user.provider = profile.provider
        user.provider_id = profile.provider_id
        user.avatar = profile.avatar or user.avatar
        session.flush()
    return user


__all__ = ["IdentityService", "OAuthProfile", "PROVIDERS", "find_or_create_user"]
