"""
Session reconciliation: one consistent ApplicationUser (or None) per client.

Sources reconciled:
- the identity provider's live credential (AuthSession),
- the persisted users record (UserGateway),
- a degraded local fallback when the store is offline or denies access.

The result is published through SessionStore, a broadcast cell with a single writer
(the reconciler). Readers call .current / .loading or subscribe().
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, List, Optional

from music_catalog.errors import GatewayError, IdentityError, UserRecordMissing, is_degraded
from music_catalog.gateway import UserGateway
from music_catalog.identity import AuthSession, Credential, FederatedConsent, FederatedKind
from music_catalog.schemas import ApplicationUser

logger = logging.getLogger(__name__)

DEGRADED_NOTICE = "You're connected! Some features may be limited."

SessionListener = Callable[[Optional[ApplicationUser]], None]


class SessionStore:
    """
    Broadcast cell holding the current ApplicationUser.

    `loading` stays True until the first publish. Each reconciliation takes a
    generation number from _begin(); a publish carrying a superseded generation is
    dropped, so a slow, stale reconciliation can never overwrite a newer result.
    Only SessionReconciler calls _begin/_publish.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._current: Optional[ApplicationUser] = None
        self._loading = True
        self._generation = 0
        self._listeners: List[SessionListener] = []

    @property
    def current(self) -> Optional[ApplicationUser]:
        with self._lock:
            return self._current

    @property
    def loading(self) -> bool:
        with self._lock:
            return self._loading

    @property
    def is_admin(self) -> bool:
        user = self.current
        return user is not None and user.role == "admin"

    # PUBLIC_INTERFACE
    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Call `listener` on every accepted publish; returns an unsubscribe function."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _begin(self) -> int:
        with self._lock:
            self._generation += 1
            return self._generation

    def _publish(self, user: Optional[ApplicationUser], generation: int) -> bool:
        with self._lock:
            if generation != self._generation:
                logger.debug("session_publish_dropped: generation=%s latest=%s", generation, self._generation)
                return False
            self._current = user
            self._loading = False
            listeners = list(self._listeners)
        for listener in listeners:
            listener(user)
        return True


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _fallback_user(credential: Credential) -> ApplicationUser:
    """Best-effort user built from provider fields only (role forced to user)."""
    return ApplicationUser(
        id=credential.uid,
        email=credential.email or "",
        display_name=credential.display_name or "User",
        role="user",
        created_at=_now(),
    )


class SessionReconciler:
    """
    Owns the published session for one client.

    Call start() once: it reconciles the credential the AuthSession already holds
    and then reconciles again on every credential-change event. Explicit operations
    (sign-in, sign-up, federated sign-in, end_session) publish their own result, so
    change events raised while one of them runs are not reconciled a second time.
    """

    def __init__(
        self,
        auth: AuthSession,
        users: Optional[UserGateway] = None,
        store: Optional[SessionStore] = None,
        notify: Optional[Callable[[str], None]] = None,
    ):
        self.auth = auth
        self.store = store or SessionStore()
        self._users = users or UserGateway()
        self._notify = notify or (lambda message: logger.info("session_notice: %s", message))
        self._explicit = 0
        self._unsubscribe: Optional[Callable[[], None]] = None

    # PUBLIC_INTERFACE
    def start(self) -> Optional[ApplicationUser]:
        """Subscribe to credential changes and reconcile the current credential."""
        if self._unsubscribe is None:
            self._unsubscribe = self.auth.on_credential_changed(self._on_credential_changed)
        return self.restore_session(self.auth.current)

    # PUBLIC_INTERFACE
    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_credential_changed(self, credential: Optional[Credential]) -> None:
        if self._explicit:
            return
        self.restore_session(credential)

    @contextmanager
    def _explicit_operation(self) -> Iterator[None]:
        self._explicit += 1
        try:
            yield
        finally:
            self._explicit -= 1

    @contextmanager
    def _reconciling(self) -> Iterator[int]:
        """
        Generation for an explicit operation's publish.

        Runs after the credential has changed; if the body raises, None is published
        so the store never keeps the previous user next to the new credential.
        """
        generation = self.store._begin()
        try:
            yield generation
        except Exception:
            self.store._publish(None, generation)
            raise

    # PUBLIC_INTERFACE
    def restore_session(self, credential: Optional[Credential]) -> Optional[ApplicationUser]:
        """
        Reconcile `credential` into the published user.

        - no credential -> None
        - stored record -> that record
        - connectivity/permission failure -> provider-only fallback (role user, created_at now)
        - missing record or any other failure -> None
        """
        generation = self.store._begin()
        user = self._resolve(credential)
        self.store._publish(user, generation)
        return user

    def _resolve(self, credential: Optional[Credential]) -> Optional[ApplicationUser]:
        if credential is None:
            return None
        try:
            record = self._users.get(credential.uid)
        except Exception as exc:
            if is_degraded(exc):
                logger.warning("session_restore_degraded: uid=%s exc=%s", credential.uid, exc)
                return _fallback_user(credential)
            logger.error("session_restore_failed: uid=%s exc=%s", credential.uid, exc)
            return None
        if record is None:
            logger.info("session_restore_no_record: uid=%s", credential.uid)
            return None
        return self._merge(record, credential)

    @staticmethod
    def _merge(record: ApplicationUser, credential: Credential) -> ApplicationUser:
        if record.display_name or not credential.display_name:
            return record
        return record.model_copy(update={"display_name": credential.display_name})

    # PUBLIC_INTERFACE
    def sign_in_with_password(self, email: str, password: str) -> ApplicationUser:
        """Password sign-in. Never creates a users record; a missing one is an error."""
        with self._explicit_operation():
            credential = self._identity_call("sign_in", self.auth.sign_in_with_email_and_password, email, password)
            with self._reconciling() as generation:
                try:
                    record = self._users.get(credential.uid)
                except GatewayError as exc:
                    if not is_degraded(exc):
                        raise
                    logger.warning("sign_in_degraded: uid=%s exc=%s", credential.uid, exc)
                    user = _fallback_user(credential)
                else:
                    if record is None:
                        logger.error("sign_in_no_record: uid=%s", credential.uid)
                        raise UserRecordMissing(credential.uid)
                    user = self._merge(record, credential)
                self.store._publish(user, generation)
            logger.info("signed_in: uid=%s role=%s", user.id, user.role)
            return user

    # PUBLIC_INTERFACE
    def sign_up(self, email: str, password: str, display_name: str) -> ApplicationUser:
        """
        Create the provider credential, set its display name, then create the users record.

        Not atomic: if the record write fails the error propagates and the provider
        credential is left in place.
        """
        with self._explicit_operation():
            credential = self._identity_call(
                "sign_up", self.auth.create_user_with_email_and_password, email, password
            )
            with self._reconciling() as generation:
                credential = self._identity_call("sign_up", self.auth.update_profile, display_name)
                user = ApplicationUser(
                    id=credential.uid,
                    email=credential.email or email,
                    display_name=display_name,
                    role="user",
                    created_at=_now(),
                )
                self._users.create(user)
                self.store._publish(user, generation)
            logger.info("signed_up: uid=%s", user.id)
            return user

    # PUBLIC_INTERFACE
    def sign_in_with_federated_provider(
        self, kind: FederatedKind, consent: FederatedConsent
    ) -> ApplicationUser:
        """
        Federated sign-in with get-or-create of the users record.

        An existing record is returned unchanged (role and created_at are kept).
        If the store is offline or denies access the fallback user is published and a
        non-blocking notice is emitted instead of an error.
        """
        kind = FederatedKind(kind)
        with self._explicit_operation():
            credential = self._identity_call(
                f"sign_in_{kind.value}", self.auth.sign_in_with_consent, kind, consent
            )
            candidate = ApplicationUser(
                id=credential.uid,
                email=credential.email or "",
                display_name=credential.display_name or "User",
                role="user",
                created_at=_now(),
            )
            with self._reconciling() as generation:
                try:
                    user = self._merge(self._users.get_or_create(candidate), credential)
                except GatewayError as exc:
                    if not is_degraded(exc):
                        raise
                    logger.warning("federated_sign_in_degraded: uid=%s exc=%s", credential.uid, exc)
                    self._notify(DEGRADED_NOTICE)
                    user = _fallback_user(credential)
                self.store._publish(user, generation)
            logger.info("signed_in_federated: uid=%s kind=%s role=%s", user.id, kind.value, user.role)
            return user

    # PUBLIC_INTERFACE
    def end_session(self) -> None:
        """Revoke the provider credential and publish None, even if revocation fails."""
        with self._explicit_operation():
            generation = self.store._begin()
            try:
                self._identity_call("sign_out", self.auth.sign_out)
            finally:
                self.store._publish(None, generation)
        logger.info("signed_out")

    @staticmethod
    def _identity_call(operation: str, fn, *args):
        try:
            return fn(*args)
        except IdentityError as exc:
            logger.error("identity_error: operation=%s code=%s message=%s", operation, exc.code, exc)
            raise
