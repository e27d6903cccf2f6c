from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import JSONResponse

from creator_studio.deps import get_assets
from creator_studio.errors import InvalidInput
from creator_studio.uploads import MAX_UPLOAD_SIZE, AssetStore, validate_upload

logger = logging.getLogger("creator-studio")

router = APIRouter(tags=["uploads"])


@router.post("/upload")
def upload_asset(
    file: UploadFile | None = File(default=None),
    assets: AssetStore = Depends(get_assets),
) -> JSONResponse:
    if file is None:
        return JSONResponse(content={"error": "No file provided. Use form field 'file'."}, status_code=400)
    try:
        # one byte past the limit marks the file as oversized
        data = file.file.read(MAX_UPLOAD_SIZE + 1)
        validate_upload(file.content_type, len(data))
        url = assets.save(data, file.content_type or "image/jpeg")
    except InvalidInput as exc:
        return JSONResponse(content={"error": exc.message}, status_code=400)
    except Exception:  # noqa: BLE001
        logger.exception("upload_fail filename=%s", file.filename)
        return JSONResponse(content={"error": "Upload failed"}, status_code=500)
    return JSONResponse(content={"url": url})


__all__ = ["router"]
