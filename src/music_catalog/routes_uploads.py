"""
Media upload endpoints (administrators only):
- POST   /uploads/{kind}                    (kind: image | audio; multipart file + folder)
- DELETE /uploads/{kind}/{public_id:path}

This layer enforces the size and type limits; the upload gateway itself does not.
"""

from __future__ import annotations

import logging
import os
import re

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from music_catalog import uploads
from music_catalog.auth import require_admin
from music_catalog.schemas import ApplicationUser, AssetDeleteResponse, UploadResult
from music_catalog.uploads import MediaKind

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/uploads", tags=["Uploads"])

_MAX_FILE_BYTES_DEFAULT = 10 * 1024 * 1024  # 10 MiB

_ALLOWED_PREFIXES = {
    MediaKind.IMAGE: ("image/",),
    MediaKind.AUDIO: ("audio/", "application/octet-stream"),
}

_DEFAULT_FOLDERS = {
    MediaKind.IMAGE: "images",
    MediaKind.AUDIO: "audio",
}


def _max_file_bytes() -> int:
    try:
        return int(os.getenv("MAX_UPLOAD_BYTES", str(_MAX_FILE_BYTES_DEFAULT)))
    except ValueError:
        return _MAX_FILE_BYTES_DEFAULT


def _sanitize_filename(name: str) -> str:
    # Letters, numbers, dot, dash, underscore.
    name = name.strip().replace("\\", "_").replace("/", "_")
    name = re.sub(r"[^A-Za-z0-9._-]+", "_", name)
    return name or "upload"


def _validate(kind: MediaKind, upload: UploadFile, content: bytes) -> str:
    """Check type and size; return the sanitized filename."""
    content_type = (upload.content_type or "").lower()
    if content_type and not content_type.startswith(_ALLOWED_PREFIXES[kind]):
        raise HTTPException(
            status_code=400,
            detail={"error": "invalid_content_type", "message": f"Expected an {kind.value} file."},
        )
    if len(content) == 0:
        raise HTTPException(status_code=400, detail={"error": "empty_file", "message": "Empty file."})
    if len(content) > _max_file_bytes():
        raise HTTPException(
            status_code=413,
            detail={"error": "file_too_large", "message": "File size must be 10MB or less."},
        )
    return _sanitize_filename(upload.filename or "upload")


@router.post(
    "/{kind}",
    response_model=UploadResult,
    summary="Upload an image or audio file",
    description="Uploads one file to the asset host and returns its public id and secure URL.",
    operation_id="upload_media",
)
def upload_media(
    kind: MediaKind,
    file: UploadFile = File(..., description="File upload (multipart/form-data)"),
    folder: str = Form("", description="Destination folder on the asset host."),
    _: ApplicationUser = Depends(require_admin),
) -> UploadResult:
    content = file.file.read()
    filename = _validate(kind, file, content)
    result = uploads.upload(
        content,
        kind,
        folder.strip() or _DEFAULT_FOLDERS[kind],
        filename=filename,
        content_type=file.content_type,
    )
    logger.info("upload_media: kind=%s public_id=%s size_bytes=%s", kind.value, result.public_id, len(content))
    return result


@router.delete(
    "/{kind}/{public_id:path}",
    response_model=AssetDeleteResponse,
    summary="Delete an uploaded asset",
    description="Signed deletion on the asset host. Returns 501 when the API secret is not configured.",
    operation_id="delete_media",
)
def delete_media(kind: MediaKind, public_id: str, _: ApplicationUser = Depends(require_admin)) -> AssetDeleteResponse:
    return AssetDeleteResponse(public_id=public_id, result=uploads.delete_file(public_id, kind))
