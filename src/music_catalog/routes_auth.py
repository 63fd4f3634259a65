"""
Auth endpoints:
- POST /auth/register
- POST /auth/login
- POST /auth/federated/{kind}   (kind: google | facebook)
- POST /auth/logout
- GET  /auth/me

Sign-in responses carry { token, token_type, user, notice }.
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response, status

from music_catalog.auth import get_current_user, get_session
from music_catalog.identity import AccessTokenConsent, AuthSession, FederatedKind, IdentityProvider
from music_catalog.schemas import (
    ApplicationUser,
    AuthLoginRequest,
    AuthRegisterRequest,
    AuthSessionResponse,
    FederatedSignInRequest,
)
from music_catalog.session import SessionReconciler

router = APIRouter(prefix="/auth", tags=["Auth"])


def _fresh_session(notices: List[str]) -> SessionReconciler:
    reconciler = SessionReconciler(AuthSession(IdentityProvider()), notify=notices.append)
    reconciler.start()
    return reconciler


def _session_response(session: SessionReconciler, user: ApplicationUser, notices: List[str]) -> AuthSessionResponse:
    credential = session.auth.current
    assert credential is not None  # set by the sign-in that produced `user`
    return AuthSessionResponse(
        token=credential.token,
        token_type="bearer",
        user=user,
        notice=notices[-1] if notices else None,
    )


@router.post(
    "/register",
    response_model=AuthSessionResponse,
    summary="Register a new user",
    description="Creates the credential and the application user record, and returns a JWT token.",
    operation_id="register_user",
)
def register(req: AuthRegisterRequest) -> AuthSessionResponse:
    """Register a new user with email/password/display name."""
    notices: List[str] = []
    session = _fresh_session(notices)
    user = session.sign_up(req.email, req.password, req.display_name)
    return _session_response(session, user, notices)


@router.post(
    "/login",
    response_model=AuthSessionResponse,
    summary="Login",
    description="Validates credentials and returns a JWT token with the reconciled user.",
    operation_id="login_user",
)
def login(req: AuthLoginRequest) -> AuthSessionResponse:
    """Login an existing user."""
    notices: List[str] = []
    session = _fresh_session(notices)
    user = session.sign_in_with_password(req.email, req.password)
    return _session_response(session, user, notices)


@router.post(
    "/federated/{kind}",
    response_model=AuthSessionResponse,
    summary="Federated sign-in",
    description=(
        "Completes a Google or Facebook sign-in with the access token from the provider's "
        "consent flow. Creates the application user on first sign-in."
    ),
    operation_id="federated_sign_in",
)
def federated_sign_in(kind: FederatedKind, req: FederatedSignInRequest) -> AuthSessionResponse:
    """Sign in through a federated provider."""
    notices: List[str] = []
    session = _fresh_session(notices)
    user = session.sign_in_with_federated_provider(kind, AccessTokenConsent(req.access_token))
    return _session_response(session, user, notices)


@router.post(
    "/logout",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Logout",
    description="Revokes every token issued for the caller's identity.",
    operation_id="logout_user",
)
def logout(session: SessionReconciler = Depends(get_session)) -> Response:
    """End the caller's session."""
    if session.auth.current is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "not_authenticated", "message": "Not authenticated."},
        )
    session.end_session()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/me",
    response_model=ApplicationUser,
    summary="Current user",
    description="Returns the reconciled application user for the bearer token.",
    operation_id="current_user",
)
def me(user: ApplicationUser = Depends(get_current_user)) -> ApplicationUser:
    return user
