from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable
from urllib.parse import urlencode

from sqlalchemy import update
from sqlalchemy.orm import Session

from creator_studio import db
from creator_studio.config import Settings
from creator_studio.errors import (
    InvalidInput,
    InvalidState,
    NoEligibleAccount,
    NotConfigured,
    NotConnected,
    RemoteRejected,
    Unauthenticated,
    UserDenied,
    WorkflowError,
)
from creator_studio.graph_client import GraphClient, find_eligible_page
from creator_studio.models import SocialAccount, User, as_utc, utc_now
from creator_studio.sessions import SessionUser, sign_state, verify_state
from creator_studio.token_cipher import TokenCipher, TokenCipherError

logger = logging.getLogger("creator-studio")

SUPPORTED_PLATFORMS = ("instagram", "facebook", "tiktok")
CONNECTABLE_PLATFORMS = frozenset({"instagram"})
DEFAULT_TOKEN_TTL = timedelta(days=60)
PLACEHOLDER_USERNAME = "instagram"
ACCOUNTS_PATH = "/accounts"


@dataclass
class UsernameLookup:
    username: str
    degraded: bool
    error: str | None = None


@dataclass
class ElevatedToken:
    token: str
    expires_at: datetime
    degraded: bool


@dataclass
class Credentials:
    access_token: str
    external_id: str


class ConnectionManager:
    def __init__(
        self,
        settings: Settings,
        graph: GraphClient,
        cipher: TokenCipher,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings
        self.graph = graph
        self.cipher = cipher
        self.clock = clock

    def redirect_uri(self, platform: str) -> str:
        return f"{self.settings.public_base_url}/connect/{platform}/callback"

    def _check_platform(self, platform: str) -> None:
        if platform not in CONNECTABLE_PLATFORMS:
            raise NotConfigured(f"Connecting {platform} is not available")
        if not self.settings.meta_configured:
            raise NotConfigured(f"{platform} OAuth is not configured (set FACEBOOK_APP_ID and FACEBOOK_APP_SECRET)")

    def initiate_connect(self, user: SessionUser | None, platform: str) -> str:
        if user is None:
            raise Unauthenticated("Sign in to connect an account")
        self._check_platform(platform)
        state = sign_state(self.settings.session_secret, "connect", platform, user_id=user.id)
        logger.info("connect_initiated user_id=%s platform=%s", user.id, platform)
        return self.graph.authorize_url(self.redirect_uri(platform), state)

    def handle_callback(
        self,
        session: Session,
        user: SessionUser | None,
        platform: str,
        code: str | None,
        state: str | None,
        error: str | None,
    ) -> str:
        """Run the OAuth callback and return the URL to redirect the browser to."""
        try:
            self._complete_connect(session, user, platform, code, state, error)
        except Unauthenticated as exc:
            logger.warning("connect_fail platform=%s code=%s", platform, exc.code)
            return self.app_url("/login", error=exc.code)
        except WorkflowError as exc:
            logger.warning("connect_fail platform=%s code=%s message=%s", platform, exc.code, exc.message)
            return self.app_url(ACCOUNTS_PATH, error=exc.code, message=exc.message)
        except Exception:  # noqa: BLE001
            logger.exception("connect_fail platform=%s code=connect_failed", platform)
            return self.app_url(ACCOUNTS_PATH, error="connect_failed", message=f"{platform} connect failed")
        return self.app_url(ACCOUNTS_PATH, connected=platform)

    def _complete_connect(
        self,
        session: Session,
        user: SessionUser | None,
        platform: str,
        code: str | None,
        state: str | None,
        error: str | None,
    ) -> None:
        if error:
            raise UserDenied(f"{platform} authorization was declined ({error})")
        if user is None:
            raise Unauthenticated("Sign in to connect an account")
        if not code:
            raise InvalidInput("Missing authorization code")
        self._check_platform(platform)
        if not verify_state(state, self.settings.session_secret, "connect", platform, user_id=user.id):
            raise InvalidState()

        exchanged = self.graph.exchange_code(code, self.redirect_uri(platform))
        if not exchanged.ok:
            raise RemoteRejected(exchanged.error, provider_status=exchanged.status_code)
        user_token = exchanged.json["access_token"]

        pages = self.graph.list_pages(user_token)
        if not pages.ok:
            raise RemoteRejected(pages.error, provider_status=pages.status_code)
        page = find_eligible_page(pages.json)
        if page is None:
            raise NoEligibleAccount(
                "No Page with an Instagram Business account. Link Instagram to a Page in Meta Business settings."
            )

        elevated = self.elevate_token(page.page_token)
        lookup = self.lookup_username(page.instagram_account_id, elevated.token)

        if session.get(User, user.id) is None:
            raise Unauthenticated("Signed-in user no longer exists")
        try:
            encrypted = self.cipher.encrypt(elevated.token)
        except TokenCipherError as exc:
            raise NotConfigured(str(exc)) from exc

        db.upsert_social_account(
            session,
            user_id=user.id,
            platform=platform,
            username=lookup.username,
            access_token=encrypted,
            token_expires_at=elevated.expires_at,
            external_id=page.instagram_account_id,
        )
        logger.info(
            "connect_success user_id=%s platform=%s token_degraded=%s username_degraded=%s",
            user.id,
            platform,
            elevated.degraded,
            lookup.degraded,
        )

    def elevate_token(self, short_lived_token: str) -> ElevatedToken:
        result = self.graph.exchange_long_lived(short_lived_token)
        now = self.clock()
        if not result.ok:
            logger.warning("long_lived_exchange_degraded error=%s", result.error)
            return ElevatedToken(token=short_lived_token, expires_at=now + DEFAULT_TOKEN_TTL, degraded=True)
        expires_in = result.json.get("expires_in")
        ttl = DEFAULT_TOKEN_TTL
        if isinstance(expires_in, (int, float)) and expires_in > 0:
            ttl = timedelta(seconds=int(expires_in))
        return ElevatedToken(token=result.json["access_token"], expires_at=now + ttl, degraded=False)

    def lookup_username(self, instagram_account_id: str, token: str) -> UsernameLookup:
        try:
            result = self.graph.fetch_instagram_username(instagram_account_id, token)
        except Exception as exc:  # noqa: BLE001
            logger.warning("username_lookup_degraded error=%s", exc)
            return UsernameLookup(username=PLACEHOLDER_USERNAME, degraded=True, error=str(exc))
        if not result.ok:
            return UsernameLookup(username=PLACEHOLDER_USERNAME, degraded=True, error=result.error)
        return UsernameLookup(username=str(result.json["username"]), degraded=False)

    def disconnect(self, session: Session, user_id: int, platform: str) -> None:
        session.execute(
            update(SocialAccount)
            .where(SocialAccount.user_id == user_id, SocialAccount.platform == platform)
            .values(
                access_token=None,
                token_expires_at=None,
                external_id=None,
                connected=False,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        logger.info("disconnect_success user_id=%s platform=%s", user_id, platform)

    def connection_status(self, session: Session, user_id: int | None) -> dict[str, bool]:
        status = {platform: False for platform in SUPPORTED_PLATFORMS}
        if user_id is None:
            return status
        for account in db.list_social_accounts(session, user_id):
            if account.platform in status:
                status[account.platform] = self._is_usable(account)
        return status

    def usable_credentials(self, session: Session, user_id: int, platform: str) -> Credentials:
        account = db.get_social_account(session, user_id, platform)
        if account is None or not self._is_usable(account) or not account.external_id:
            raise NotConnected(f"Connect {platform} first (Accounts → Connect {platform.capitalize()})")
        token = self.cipher.decrypt(account.access_token)
        if not token:
            raise NotConnected(f"Stored {platform} token could not be read; reconnect {platform}")
        return Credentials(access_token=token, external_id=account.external_id)

    def _is_usable(self, account: SocialAccount) -> bool:
        if not account.connected or not account.access_token:
            return False
        expires_at = as_utc(account.token_expires_at)
        return expires_at is None or expires_at > self.clock()

    def app_url(self, path: str, **params: str) -> str:
        """Absolute URL on this app, used for browser redirects."""
        return f"{self.settings.public_base_url}{path}?{urlencode(params)}"


__all__ = [
    "CONNECTABLE_PLATFORMS",
    "ConnectionManager",
    "Credentials",
    "ElevatedToken",
    "SUPPORTED_PLATFORMS",
    "UsernameLookup",
]
