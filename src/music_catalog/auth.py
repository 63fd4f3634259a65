"""
FastAPI dependencies that turn a bearer token into a reconciled session.

Every request gets its own AuthSession, SessionReconciler and SessionStore. The
reconciler has finished restore_session before any route reads the store, so role
checks never run against a partial session.

The frontend sends:
- Authorization: Bearer <token>
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from music_catalog.identity import AuthSession, IdentityProvider
from music_catalog.schemas import ApplicationUser
from music_catalog.session import SessionReconciler

_bearer_scheme = HTTPBearer(auto_error=False)


# PUBLIC_INTERFACE
def get_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> SessionReconciler:
    """
    Build the request's session. Anonymous when no bearer token is sent.

    An invalid or revoked token raises IdentityError (mapped to 401 in main.py).
    """
    auth = AuthSession(IdentityProvider())
    if credentials is not None and credentials.scheme.lower() == "bearer":
        auth.restore(credentials.credentials)
    reconciler = SessionReconciler(auth)
    reconciler.start()
    return reconciler


# PUBLIC_INTERFACE
def get_current_user(session: SessionReconciler = Depends(get_session)) -> ApplicationUser:
    """Return the reconciled user; 401 if there is none."""
    user = session.store.current
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "not_authenticated", "message": "Not authenticated."},
        )
    return user


# PUBLIC_INTERFACE
def require_admin(user: ApplicationUser = Depends(get_current_user)) -> ApplicationUser:
    """Return the user if they are an administrator; 403 otherwise."""
    if user.role != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "forbidden", "message": "Administrator access required."},
        )
    return user
