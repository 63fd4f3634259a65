"""
FastAPI application entrypoint for the Music Catalog backend.

Authenticated users browse genres, artists and songs; administrators manage them and
upload media to Cloudinary.

CORS is enabled for local development (http://localhost:3000) and can be extended
via environment variables.
"""

from __future__ import annotations

import logging
import os as _os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from music_catalog.db import init_db
from music_catalog.errors import (
    CONNECTIVITY,
    AssetDeletionUnsupported,
    GatewayError,
    HostRejected,
    IdentityError,
    MissingConfiguration,
    UploadError,
)
from music_catalog.routes_auth import router as auth_router
from music_catalog.routes_catalog import router as catalog_router
from music_catalog.routes_uploads import router as uploads_router

logger = logging.getLogger(__name__)

_IDENTITY_STATUS = {
    "invalid-credential": 401,
    "invalid-token": 401,
    "user-token-expired": 401,
    "no-current-user": 401,
    "user-data-not-found": 403,
    "email-already-in-use": 409,
    "account-exists-with-different-credential": 409,
    "network-request-failed": 503,
}

openapi_tags = [
    {"name": "Auth", "description": "Register, sign in (password or federated) and sign out."},
    {"name": "Catalog", "description": "Genres, artists and songs."},
    {"name": "Uploads", "description": "Image and audio uploads to the asset host (admin)."},
    {"name": "Health", "description": "Service health and basic runtime info."},
]


@asynccontextmanager
async def lifespan(_: FastAPI):
    try:
        init_db()
    except RuntimeError as exc:
        # The service still starts; requests fail with 503 until the database is configured.
        logger.warning("startup_init_db_skipped: %s", exc)
    yield


app = FastAPI(
    title="Music Catalog Backend API",
    description=(
        "Backend for a music catalogue.\n\n"
        "Authentication: Authorization: Bearer <token> from /auth/login, /auth/register "
        "or /auth/federated/{kind}.\n\n"
        "Writes and uploads require the admin role."
    ),
    version="1.0.0",
    openapi_tags=openapi_tags,
    lifespan=lifespan,
)

# CORS: allow React dev server + configurable origins via env (comma-separated):
# CORS_ALLOW_ORIGINS or ALLOWED_ORIGINS.
cors_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

_allow_origins_raw = _os.getenv("CORS_ALLOW_ORIGINS") or _os.getenv("ALLOWED_ORIGINS", "")
cors_origins.extend(o.strip() for o in _allow_origins_raw.split(",") if o.strip())

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(catalog_router)
app.include_router(uploads_router)


def _error(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": {"error": error, "message": message}})


@app.exception_handler(GatewayError)
def _gateway_error(_: Request, exc: GatewayError) -> JSONResponse:
    if exc.category == CONNECTIVITY:
        return _error(503, "database_unavailable", "Database connection/query failed.")
    return _error(500, "database_error", f"{exc.collection}.{exc.operation} failed.")


@app.exception_handler(IdentityError)
def _identity_error(_: Request, exc: IdentityError) -> JSONResponse:
    return _error(_IDENTITY_STATUS.get(exc.code, 400), exc.code, str(exc))


@app.exception_handler(UploadError)
def _upload_error(_: Request, exc: UploadError) -> JSONResponse:
    if isinstance(exc, MissingConfiguration):
        status_code = 503
    elif isinstance(exc, HostRejected):
        status_code = 400
    else:
        status_code = 502
    return _error(status_code, exc.code, str(exc))


@app.exception_handler(AssetDeletionUnsupported)
def _deletion_unsupported(_: Request, exc: AssetDeletionUnsupported) -> JSONResponse:
    return _error(501, "deletion_unsupported", str(exc))


@app.exception_handler(RuntimeError)
def _misconfigured(_: Request, exc: RuntimeError) -> JSONResponse:
    # Raised by db/identity config helpers when required env vars are missing.
    logger.error("service_misconfigured: %s", exc)
    return _error(503, "service_misconfigured", str(exc))


@app.get(
    "/",
    summary="Health check",
    description="Simple health check endpoint.",
    tags=["Health"],
)
def health_check():
    """Return basic service health information."""
    return {"status": "ok"}
