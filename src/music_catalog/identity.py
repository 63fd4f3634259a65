"""
Identity provider: password and federated credentials, password hashing and JWTs.

IdentityProvider is the credential authority (backed by the identities table).
AuthSession is one client's view of it: it holds the live Credential and notifies
listeners whenever that credential changes (sign-in, sign-up, sign-out).

Federated consent is pluggable (FederatedConsent). AccessTokenConsent verifies an
access token obtained by the client's consent flow against the provider's userinfo
endpoint.
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol

import requests
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from music_catalog.db import get_db_session
from music_catalog.errors import IdentityError
from music_catalog.models import Identity

logger = logging.getLogger(__name__)

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

_MIN_PASSWORD_LENGTH = 6


class FederatedKind(str, Enum):
    GOOGLE = "google"
    FACEBOOK = "facebook"


_USERINFO_URLS = {
    FederatedKind.GOOGLE: "https://www.googleapis.com/oauth2/v3/userinfo",
    FederatedKind.FACEBOOK: "https://graph.facebook.com/me",
}


def _jwt_secret() -> str:
    secret = os.getenv("JWT_SECRET")
    if not secret:
        raise RuntimeError("JWT_SECRET env var is required.")
    return secret


def _jwt_algorithm() -> str:
    return os.getenv("JWT_ALGORITHM", "HS256")


def _jwt_exp_minutes() -> int:
    try:
        return int(os.getenv("JWT_EXPIRES_MINUTES", "4320"))  # default: 3 days
    except ValueError:
        return 4320


# PUBLIC_INTERFACE
def hash_password(password: str) -> str:
    """Hash a plain-text password."""
    return _pwd_context.hash(password)


# PUBLIC_INTERFACE
def verify_password(password: str, password_hash: str) -> bool:
    """Verify a plain-text password against a hash."""
    return _pwd_context.verify(password, password_hash)


@dataclass(frozen=True)
class Credential:
    """A live provider credential: who the caller is, plus the bearer token for it."""

    uid: str
    email: Optional[str]
    display_name: Optional[str]
    provider: str
    token: str


@dataclass(frozen=True)
class FederatedProfile:
    """What a completed consent flow tells us about the account."""

    kind: FederatedKind
    subject: str
    email: Optional[str]
    display_name: Optional[str]


class FederatedConsent(Protocol):
    def authorize(self, kind: FederatedKind) -> FederatedProfile: ...


class AccessTokenConsent:
    """Consent completed client-side; verify its access token with the provider."""

    def __init__(self, access_token: str, timeout: float = 10.0):
        self._access_token = access_token
        self._timeout = timeout

    def authorize(self, kind: FederatedKind) -> FederatedProfile:
        url = _USERINFO_URLS[kind]
        params = {"fields": "id,name,email"} if kind is FederatedKind.FACEBOOK else None
        try:
            resp = requests.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {self._access_token}"},
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            logger.warning("federated_userinfo_unreachable: kind=%s exc=%s", kind.value, exc.__class__.__name__)
            raise IdentityError("network-request-failed", f"Could not reach {kind.value}.") from exc

        if resp.status_code in (400, 401, 403):
            raise IdentityError("invalid-credential", f"The {kind.value} sign-in was rejected.")
        if not resp.ok:
            raise IdentityError("network-request-failed", f"{kind.value} returned {resp.status_code}.")

        data: Dict[str, Any] = resp.json()
        subject = data.get("sub") if kind is FederatedKind.GOOGLE else data.get("id")
        if not subject:
            raise IdentityError("invalid-credential", f"The {kind.value} profile has no account id.")
        return FederatedProfile(
            kind=kind,
            subject=str(subject),
            email=data.get("email"),
            display_name=data.get("name"),
        )


@contextmanager
def _provider_call(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("identity_provider_error: operation=%s exc=%s", operation, exc)
        raise IdentityError("network-request-failed", "The identity provider is unreachable.") from exc


def _different_credential() -> IdentityError:
    return IdentityError(
        "account-exists-with-different-credential",
        "An account already exists with the same email but a different sign-in method.",
    )


class IdentityProvider:
    """Credential authority backed by the identities table."""

    @staticmethod
    def _find_by_email(db: Session, email: str) -> Optional[Identity]:
        return db.execute(select(Identity).where(Identity.email == email)).scalars().first()

    @staticmethod
    def _find_federated(db: Session, kind: FederatedKind, subject: str) -> Optional[Identity]:
        return db.execute(
            select(Identity).where(Identity.provider == kind.value, Identity.provider_subject == subject)
        ).scalar_one_or_none()

    # PUBLIC_INTERFACE
    def create_user_with_email_and_password(self, email: str, password: str) -> Credential:
        email = email.lower().strip()
        if "@" not in email:
            raise IdentityError("invalid-email", "The email address is badly formatted.")
        if len(password) < _MIN_PASSWORD_LENGTH:
            raise IdentityError("weak-password", "Password should be at least 6 characters.")

        with _provider_call("create_user"):
            with get_db_session() as db:
                if self._find_by_email(db, email) is not None:
                    raise IdentityError("email-already-in-use", "Email is already registered.")
                identity = Identity(
                    email=email,
                    password_hash=hash_password(password),
                    provider="password",
                    provider_subject=email,
                    token_epoch=0,
                )
                db.add(identity)
                try:
                    db.flush()
                except IntegrityError:
                    # A concurrent sign-up took the email between the check and the insert.
                    logger.info("identity_create_race: email=%s", email)
                    raise IdentityError("email-already-in-use", "Email is already registered.")
                return self._credential(identity)

    # PUBLIC_INTERFACE
    def sign_in_with_email_and_password(self, email: str, password: str) -> Credential:
        email = email.lower().strip()
        with _provider_call("sign_in"):
            with get_db_session() as db:
                identity = db.execute(
                    select(Identity).where(Identity.provider == "password", Identity.email == email)
                ).scalar_one_or_none()
                if identity is None or not identity.password_hash or not verify_password(
                    password, identity.password_hash
                ):
                    raise IdentityError("invalid-credential", "Invalid email or password.")
                return self._credential(identity)

    # PUBLIC_INTERFACE
    def sign_in_with_federated(self, profile: FederatedProfile) -> Credential:
        """Get-or-create the identity for (provider, subject)."""
        if not profile.email:
            raise IdentityError("account-missing-email", f"The {profile.kind.value} account has no email.")
        email = profile.email.lower().strip()

        with _provider_call("sign_in_federated"):
            try:
                with get_db_session() as db:
                    identity = self._find_federated(db, profile.kind, profile.subject)
                    if identity is None:
                        if self._find_by_email(db, email) is not None:
                            raise _different_credential()
                        identity = Identity(
                            email=email,
                            display_name=profile.display_name,
                            provider=profile.kind.value,
                            provider_subject=profile.subject,
                            token_epoch=0,
                        )
                        db.add(identity)
                        db.flush()
                    return self._credential(identity)
            except IntegrityError:
                logger.info("identity_federated_race: kind=%s subject=%s", profile.kind.value, profile.subject)

            # Lost an insert race: either the same account was created concurrently,
            # or another sign-in method took the email.
            with get_db_session() as db:
                identity = self._find_federated(db, profile.kind, profile.subject)
                if identity is None:
                    raise _different_credential()
                return self._credential(identity)

    # PUBLIC_INTERFACE
    def update_profile(self, credential: Credential, display_name: str) -> Credential:
        with _provider_call("update_profile"):
            with get_db_session() as db:
                identity = db.get(Identity, credential.uid)
                if identity is None:
                    raise IdentityError("no-current-user", "No identity for this credential.")
                identity.display_name = display_name
        return replace(credential, display_name=display_name)

    # PUBLIC_INTERFACE
    def verify_token(self, token: str) -> Credential:
        """Decode a bearer token and check it has not been revoked by sign-out."""
        try:
            payload = jwt.decode(token, _jwt_secret(), algorithms=[_jwt_algorithm()])
        except JWTError:
            raise IdentityError("invalid-token", "Invalid or expired token.")

        uid = payload.get("sub")
        if not uid:
            raise IdentityError("invalid-token", "Invalid token payload.")

        with _provider_call("verify_token"):
            with get_db_session() as db:
                identity = db.get(Identity, str(uid))
                if identity is None or identity.token_epoch != payload.get("epoch"):
                    raise IdentityError("user-token-expired", "This session has ended. Please sign in again.")
                return Credential(
                    uid=identity.id,
                    email=identity.email,
                    display_name=identity.display_name,
                    provider=identity.provider,
                    token=token,
                )

    # PUBLIC_INTERFACE
    def revoke(self, credential: Credential) -> None:
        """Invalidate every token issued so far for this identity."""
        with _provider_call("revoke"):
            with get_db_session() as db:
                identity = db.get(Identity, credential.uid)
                if identity is not None:
                    identity.token_epoch += 1

    def _credential(self, identity: Identity) -> Credential:
        return Credential(
            uid=identity.id,
            email=identity.email,
            display_name=identity.display_name,
            provider=identity.provider,
            token=self._issue_token(identity),
        )

    @staticmethod
    def _issue_token(identity: Identity) -> str:
        now = datetime.now(timezone.utc)
        exp = now + timedelta(minutes=_jwt_exp_minutes())
        payload: Dict[str, Any] = {
            "sub": identity.id,
            "email": identity.email,
            "epoch": identity.token_epoch,
            "iat": int(now.timestamp()),
            "exp": int(exp.timestamp()),
        }
        return jwt.encode(payload, _jwt_secret(), algorithm=_jwt_algorithm())


CredentialListener = Callable[[Optional[Credential]], None]


class AuthSession:
    """
    One client's live credential, with change notifications.

    Listeners are called synchronously after every change, with the new credential
    (None after sign-out).
    """

    def __init__(self, provider: Optional[IdentityProvider] = None):
        self._provider = provider or IdentityProvider()
        self._current: Optional[Credential] = None
        self._listeners: List[CredentialListener] = []

    @property
    def current(self) -> Optional[Credential]:
        return self._current

    # PUBLIC_INTERFACE
    def on_credential_changed(self, listener: CredentialListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # PUBLIC_INTERFACE
    def restore(self, token: str) -> Credential:
        """Adopt an existing bearer token as the live credential (no change event)."""
        self._current = self._provider.verify_token(token)
        return self._current

    def sign_in_with_email_and_password(self, email: str, password: str) -> Credential:
        return self._set(self._provider.sign_in_with_email_and_password(email, password))

    def create_user_with_email_and_password(self, email: str, password: str) -> Credential:
        return self._set(self._provider.create_user_with_email_and_password(email, password))

    def sign_in_with_consent(self, kind: FederatedKind, consent: FederatedConsent) -> Credential:
        profile = consent.authorize(kind)
        return self._set(self._provider.sign_in_with_federated(profile))

    def update_profile(self, display_name: str) -> Credential:
        if self._current is None:
            raise IdentityError("no-current-user", "Nobody is signed in.")
        self._current = self._provider.update_profile(self._current, display_name)
        return self._current

    def sign_out(self) -> None:
        """Revoke the live credential and clear it, even if revocation fails."""
        credential = self._current
        try:
            if credential is not None:
                self._provider.revoke(credential)
        finally:
            self._set(None)

    def _set(self, credential: Optional[Credential]) -> Optional[Credential]:
        self._current = credential
        for listener in list(self._listeners):
            listener(credential)
        return credential
