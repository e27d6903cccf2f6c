from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass

logger = logging.getLogger("creator-studio")

DEFAULT_API_VERSION = "v21.0"


def _env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name, "").strip()
    return value or default


@dataclass(frozen=True)
class Settings:
    public_base_url: str = "http://localhost:8000"
    database_url: str = "sqlite:///creator_studio.db"
    session_secret: str = ""
    encryption_secret: str | None = None
    facebook_app_id: str | None = None
    facebook_app_secret: str | None = None
    google_client_id: str | None = None
    google_client_secret: str | None = None
    meta_api_version: str = DEFAULT_API_VERSION
    graph_base_url: str = "https://graph.facebook.com"
    instagram_base_url: str = "https://graph.instagram.com"
    cloudinary_cloud_name: str | None = None
    cloudinary_api_key: str | None = None
    cloudinary_api_secret: str | None = None
    upload_dir: str = "uploads"
    env: str = "development"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        session_secret = _env("JWT_SECRET")
        signing_secret = session_secret
        if not signing_secret:
            logger.warning("config_warning reason=jwt_secret_missing sessions_reset_on_restart=true")
            signing_secret = secrets.token_urlsafe(48)
        return cls(
            public_base_url=(_env("PUBLIC_BASE_URL", "http://localhost:8000") or "").rstrip("/"),
            database_url=_env("DATABASE_URL", "sqlite:///creator_studio.db") or "",
            session_secret=signing_secret,
            # Tokens are only encrypted with an operator-provided secret, never the generated one.
            encryption_secret=_env("ENCRYPTION_KEY") or session_secret,
            facebook_app_id=_env("FACEBOOK_APP_ID"),
            facebook_app_secret=_env("FACEBOOK_APP_SECRET"),
            google_client_id=_env("GOOGLE_CLIENT_ID"),
            google_client_secret=_env("GOOGLE_CLIENT_SECRET"),
            meta_api_version=_env("META_API_VERSION", DEFAULT_API_VERSION) or DEFAULT_API_VERSION,
            cloudinary_cloud_name=_env("CLOUDINARY_CLOUD_NAME"),
            cloudinary_api_key=_env("CLOUDINARY_API_KEY"),
            cloudinary_api_secret=_env("CLOUDINARY_API_SECRET"),
            upload_dir=_env("UPLOAD_DIR", "uploads") or "uploads",
            env=_env("ENV", "development") or "development",
            log_level=(_env("LOG_LEVEL", "INFO") or "INFO").upper(),
        )

    @property
    def meta_configured(self) -> bool:
        return bool(self.facebook_app_id and self.facebook_app_secret)

    @property
    def google_configured(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)

    @property
    def cloudinary_configured(self) -> bool:
        return bool(self.cloudinary_cloud_name and self.cloudinary_api_key and self.cloudinary_api_secret)

    @property
    def secure_cookies(self) -> bool:
        return self.env == "production"


__all__ = ["Settings"]
