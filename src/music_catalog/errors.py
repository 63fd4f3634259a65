"""
Domain exceptions for the music catalog backend.

Three families:
- GatewayError: document-store failures, tagged with collection/operation/category.
- IdentityError / UserRecordMissing: identity-provider and session failures.
- UploadError and subclasses: asset-host failures (exactly five categories).

Routers never build these; they translate them into JSON HTTP errors (see main.py).
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.exc import DBAPIError, DisconnectionError, InterfaceError, OperationalError

CONNECTIVITY = "connectivity"
PERMISSION = "permission"
OTHER = "other"

# PostgreSQL SQLSTATE for insufficient_privilege.
_PG_INSUFFICIENT_PRIVILEGE = "42501"


# PUBLIC_INTERFACE
def classify_store_error(exc: BaseException) -> str:
    """
    Classify a document-store failure as connectivity, permission or other.

    Structured information is checked first (SQLAlchemy exception type, DBAPI pgcode).
    Matching "offline"/"permission" in the error text is the last resort for drivers
    that expose neither.
    """
    if isinstance(exc, GatewayError):
        return exc.category
    if isinstance(exc, (OperationalError, InterfaceError, DisconnectionError)):
        return CONNECTIVITY
    if isinstance(exc, DBAPIError) and getattr(exc.orig, "pgcode", None) == _PG_INSUFFICIENT_PRIVILEGE:
        return PERMISSION

    text = str(exc).lower()
    if "offline" in text:
        return CONNECTIVITY
    if "permission" in text:
        return PERMISSION
    return OTHER


# PUBLIC_INTERFACE
def is_degraded(exc: BaseException) -> bool:
    """True when the failure is a connectivity-or-permission one (eligible for fallback)."""
    return classify_store_error(exc) in (CONNECTIVITY, PERMISSION)


class GatewayError(Exception):
    """A document-store call failed; chained from the underlying SQLAlchemy error."""

    def __init__(self, collection: str, operation: str, cause: BaseException):
        self.collection = collection
        self.operation = operation
        self.cause = cause
        self.category = classify_store_error(cause)
        super().__init__(f"{collection}.{operation} failed: {cause}")


class IdentityError(Exception):
    """
    Identity-provider failure with a stable, user-facing code.

    Codes used: invalid-email, weak-password, email-already-in-use, invalid-credential,
    invalid-token, user-token-expired, account-exists-with-different-credential,
    account-missing-email, unsupported-provider, no-current-user, network-request-failed.
    """

    def __init__(self, code: str, message: Optional[str] = None):
        self.code = code
        super().__init__(message or code)


class UserRecordMissing(IdentityError):
    """Password sign-in succeeded but there is no application user record for the identity."""

    def __init__(self, uid: str):
        self.uid = uid
        super().__init__("user-data-not-found", "User data not found")


class UploadError(Exception):
    """Base class for asset-host upload failures."""

    code = "upload_failed"


class MissingConfiguration(UploadError):
    code = "missing_configuration"

    def __init__(self, message: str = "Cloudinary cloud name not configured. Please check your environment variables."):
        super().__init__(message)


class InvalidUploadPreset(UploadError):
    code = "invalid_upload_preset"

    def __init__(self, message: str = "Upload preset not found. Please check your Cloudinary configuration or create the upload preset."):
        super().__init__(message)


class InvalidCloudIdentifier(UploadError):
    code = "invalid_cloud_identifier"

    def __init__(self, message: str = "Invalid cloud name. Please verify your Cloudinary configuration."):
        super().__init__(message)


class HostRejected(UploadError):
    """The host answered with a structured error body."""

    code = "host_rejected"

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"Cloudinary error: {message}")


class HostUnreachable(UploadError):
    """Non-2xx with an unparseable body, or no response at all (status 0)."""

    code = "host_unreachable"

    def __init__(self, status: int, status_text: str):
        self.status = status
        self.status_text = status_text
        super().__init__(f"Upload failed: {status} {status_text}. Check your Cloudinary configuration.")


class AssetDeletionUnsupported(Exception):
    """Asset deletion needs CLOUDINARY_API_SECRET, which is not configured."""

    def __init__(self, public_id: str):
        self.public_id = public_id
        super().__init__(
            f"Deleting asset {public_id!r} requires CLOUDINARY_API_SECRET; deletion is not available."
        )
