"""
Asset upload gateway (Cloudinary).

One multipart POST per upload, no retries, no client-side validation (size and type
limits belong to the caller). Host failures are mapped onto exactly five categories:
MissingConfiguration, InvalidUploadPreset, InvalidCloudIdentifier, HostRejected and
HostUnreachable.

Cloudinary has no "audio" resource type: audio goes to the video endpoint with
resource_type=video.
"""

from __future__ import annotations

import hashlib
import logging
import os
import time
from enum import Enum
from typing import IO, Any, Dict, Optional, Tuple, Union

import requests

from music_catalog.errors import (
    AssetDeletionUnsupported,
    HostRejected,
    HostUnreachable,
    InvalidCloudIdentifier,
    InvalidUploadPreset,
    MissingConfiguration,
    UploadError,
)
from music_catalog.schemas import UploadResult

logger = logging.getLogger(__name__)

_API_BASE = "https://api.cloudinary.com/v1_1"
_DELIVERY_BASE = "https://res.cloudinary.com"
_DEFAULT_UPLOAD_PRESET = "spoty_uploads"
_UPLOAD_TIMEOUT_SECONDS = 120


class MediaKind(str, Enum):
    IMAGE = "image"
    AUDIO = "audio"

    @property
    def resource_type(self) -> str:
        return "image" if self is MediaKind.IMAGE else "video"


def _cloud_name() -> Optional[str]:
    return (os.getenv("CLOUDINARY_CLOUD_NAME") or "").strip() or None


def _upload_preset() -> str:
    return (os.getenv("CLOUDINARY_UPLOAD_PRESET") or "").strip() or _DEFAULT_UPLOAD_PRESET


def _api_key() -> Optional[str]:
    return (os.getenv("CLOUDINARY_API_KEY") or "").strip() or None


def _api_secret() -> Optional[str]:
    return (os.getenv("CLOUDINARY_API_SECRET") or "").strip() or None


def _require_cloud_name() -> str:
    cloud_name = _cloud_name()
    if not cloud_name:
        raise MissingConfiguration()
    return cloud_name


def _classify_host_message(message: str) -> UploadError:
    lowered = message.lower()
    if "invalid upload preset" in lowered or "upload preset not found" in lowered:
        return InvalidUploadPreset()
    if "cloud name" in lowered or "cloud_name" in lowered:
        return InvalidCloudIdentifier()
    return HostRejected(message)


def _host_error(resp: requests.Response) -> UploadError:
    """Map a non-2xx response to an upload error category."""
    raw = resp.text
    logger.error("cloudinary_error_response: status=%s body=%s", resp.status_code, raw[:500])
    try:
        body = resp.json()
    except ValueError:
        body = None

    message = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        message = body["error"].get("message")
    if message:
        return _classify_host_message(message)

    # Unparseable body: the raw text may still name the preset or cloud problem.
    classified = _classify_host_message(raw)
    if not isinstance(classified, HostRejected):
        return classified
    return HostUnreachable(resp.status_code, resp.reason or "")


def _post(url: str, required: Tuple[str, ...] = (), **kwargs: Any) -> Dict[str, Any]:
    """POST once; return the JSON body, which must be an object carrying every `required` key."""
    try:
        resp = requests.post(url, timeout=_UPLOAD_TIMEOUT_SECONDS, **kwargs)
    except requests.RequestException as exc:
        logger.error("cloudinary_unreachable: url=%s exc=%s", url, exc.__class__.__name__)
        raise HostUnreachable(0, str(exc)) from exc

    if not resp.ok:
        raise _host_error(resp)

    try:
        result = resp.json()
    except ValueError:
        raise HostUnreachable(resp.status_code, "Unreadable response body")

    if isinstance(result, dict) and result.get("error"):
        error = result["error"]
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise _classify_host_message(message or "Upload failed")

    if not isinstance(result, dict) or not all(result.get(key) for key in required):
        logger.error("cloudinary_malformed_response: url=%s status=%s", url, resp.status_code)
        raise HostUnreachable(resp.status_code, "Malformed response")
    return result


# PUBLIC_INTERFACE
def upload(
    file: Union[bytes, IO[bytes]],
    kind: Union[MediaKind, str],
    folder: str,
    *,
    filename: str = "upload",
    content_type: Optional[str] = None,
) -> UploadResult:
    """
    Upload one file and return its durable public address.

    Raises MissingConfiguration before any network call when CLOUDINARY_CLOUD_NAME is unset.
    """
    kind = MediaKind(kind)
    cloud_name = _require_cloud_name()

    data = {"upload_preset": _upload_preset(), "folder": folder}
    if kind is MediaKind.AUDIO:
        data["resource_type"] = "video"

    url = f"{_API_BASE}/{cloud_name}/{kind.resource_type}/upload"
    logger.info("cloudinary_upload: kind=%s folder=%s filename=%s", kind.value, folder, filename)
    try:
        result = _post(
            url,
            required=("public_id", "secure_url"),
            data=data,
            files={"file": (filename, file, content_type or "application/octet-stream")},
        )
    except UploadError as exc:
        logger.error("cloudinary_upload_failed: kind=%s code=%s message=%s", kind.value, exc.code, exc)
        raise

    return UploadResult(
        public_id=result["public_id"],
        secure_url=result["secure_url"],
        resource_type=result.get("resource_type"),
        format=result.get("format"),
    )


def _sign(params: Dict[str, Any], api_secret: str) -> str:
    to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params))
    return hashlib.sha1((to_sign + api_secret).encode("utf-8")).hexdigest()


# PUBLIC_INTERFACE
def delete_file(public_id: str, kind: Union[MediaKind, str] = MediaKind.IMAGE) -> str:
    """
    Delete an asset with a signed destroy call and return the host's result string
    ('ok' or 'not found').

    Raises AssetDeletionUnsupported when the API key/secret are not configured; it
    never reports success without contacting the host.
    """
    kind = MediaKind(kind)
    cloud_name = _require_cloud_name()
    api_key, api_secret = _api_key(), _api_secret()
    if not (api_key and api_secret):
        logger.warning("cloudinary_delete_unsupported: public_id=%s", public_id)
        raise AssetDeletionUnsupported(public_id)

    params: Dict[str, Any] = {"public_id": public_id, "timestamp": int(time.time())}
    data = dict(params, api_key=api_key, signature=_sign(params, api_secret))

    url = f"{_API_BASE}/{cloud_name}/{kind.resource_type}/destroy"
    try:
        result = _post(url, data=data)
    except UploadError as exc:
        logger.error("cloudinary_delete_failed: public_id=%s code=%s message=%s", public_id, exc.code, exc)
        raise
    outcome = str(result.get("result", ""))
    logger.info("cloudinary_delete: public_id=%s result=%s", public_id, outcome)
    return outcome


# PUBLIC_INTERFACE
def optimized_image_url(public_id: str, width: Optional[int] = None, height: Optional[int] = None) -> str:
    """Delivery URL with automatic format/quality and optional resizing."""
    transformations = "f_auto,q_auto"
    if width:
        transformations += f",w_{width}"
    if height:
        transformations += f",h_{height}"
    return f"{_DELIVERY_BASE}/{_require_cloud_name()}/image/upload/{transformations}/{public_id}"


# PUBLIC_INTERFACE
def audio_url(public_id: str) -> str:
    return f"{_DELIVERY_BASE}/{_require_cloud_name()}/video/upload/{public_id}"
