from __future__ import annotations

import base64
import logging
import secrets
import time
from pathlib import Path

import cloudinary
import cloudinary.uploader

from creator_studio.config import Settings
from creator_studio.errors import InvalidInput

logger = logging.getLogger("creator-studio")

MAX_UPLOAD_SIZE = 10 * 1024 * 1024
# Instagram single-image posts accept JPEG only
ALLOWED_CONTENT_TYPES = frozenset({"image/jpeg"})
CLOUDINARY_FOLDER = "creator-studio-uploads"
UPLOADS_PATH = "/uploads"


def validate_upload(content_type: str | None, size: int) -> None:
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise InvalidInput("Instagram requires JPEG only. Please upload a .jpg image.")
    if size > MAX_UPLOAD_SIZE:
        raise InvalidInput("File too large. Max 10MB.")
    if size == 0:
        raise InvalidInput("Uploaded file is empty.")


class AssetStore:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.upload_dir = Path(settings.upload_dir)

    def save(self, data: bytes, content_type: str) -> str:
        """Store an uploaded image and return its public URL."""
        if self.settings.cloudinary_configured:
            return self._save_cloudinary(data, content_type)
        return self._save_local(data)

    def _save_cloudinary(self, data: bytes, content_type: str) -> str:
        cloudinary.config(
            cloud_name=self.settings.cloudinary_cloud_name,
            api_key=self.settings.cloudinary_api_key,
            api_secret=self.settings.cloudinary_api_secret,
            secure=True,
        )
        data_uri = f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"
        result = cloudinary.uploader.upload(data_uri, folder=CLOUDINARY_FOLDER, resource_type="image")
        logger.info("upload_success backend=cloudinary public_id=%s", result.get("public_id"))
        return result["secure_url"]

    def _save_local(self, data: bytes) -> str:
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        name = f"{int(time.time() * 1000)}-{secrets.token_hex(4)}.jpg"
        (self.upload_dir / name).write_bytes(data)
        logger.info("upload_success backend=local name=%s size=%s", name, len(data))
        return f"{self.settings.public_base_url}{UPLOADS_PATH}/{name}"


__all__ = ["ALLOWED_CONTENT_TYPES", "AssetStore", "MAX_UPLOAD_SIZE", "UPLOADS_PATH", "validate_upload"]
