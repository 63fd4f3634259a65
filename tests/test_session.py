from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError, ProgrammingError

from music_catalog.cli import promote_user
from music_catalog.errors import GatewayError, IdentityError, UserRecordMissing
from music_catalog.gateway import UserGateway
from music_catalog.identity import AuthSession, FederatedKind, FederatedProfile, IdentityProvider
from music_catalog.schemas import ApplicationUser
from music_catalog.session import DEGRADED_NOTICE, SessionReconciler, SessionStore


class FakeConsent:
    def __init__(self, subject="google-123", email="fed@example.com", name="Fed User"):
        self.subject = subject
        self.email = email
        self.name = name

    def authorize(self, kind):
        return FederatedProfile(kind=kind, subject=self.subject, email=self.email, display_name=self.name)


def _store_error(operation, message, exc_type=OperationalError):
    return GatewayError("users", operation, exc_type("SELECT", {}, Exception(message)))


class OfflineUsers(UserGateway):
    def get(self, uid):
        raise _store_error("get", "Failed to get document because the client is offline.")

    def get_or_create(self, user):
        raise _store_error("get_or_create", "client is offline")


class BrokenUsers(UserGateway):
    def get(self, uid):
        raise _store_error("get", "syntax error", ProgrammingError)

    def create(self, user):
        raise _store_error("create", "syntax error", ProgrammingError)


class DeniedUsers(UserGateway):
    def get(self, uid):
        raise _store_error("get", "Missing or insufficient permissions.", ProgrammingError)

    def get_or_create(self, user):
        raise _store_error("get_or_create", "Missing or insufficient permissions.", ProgrammingError)


def _admin_record(uid, email):
    created = datetime(2020, 1, 1, tzinfo=timezone.utc)
    UserGateway().create(
        ApplicationUser(id=uid, email=email, display_name="Boss", role="admin", created_at=created)
    )
    return created


def test_restore_without_credential_publishes_none():
    reconciler = SessionReconciler(AuthSession())
    assert reconciler.store.loading

    assert reconciler.start() is None
    assert reconciler.store.current is None
    assert not reconciler.store.loading


def test_restore_existing_record():
    credential = IdentityProvider().create_user_with_email_and_password("a@example.com", "secret123")
    created = _admin_record(credential.uid, "a@example.com")

    reconciler = SessionReconciler(AuthSession())
    user = reconciler.restore_session(credential)

    assert user.role == "admin"
    assert user.display_name == "Boss"
    assert user.created_at.replace(tzinfo=timezone.utc) == created
    assert reconciler.store.is_admin


def test_restore_offline_falls_back_to_plain_user():
    credential = IdentityProvider().create_user_with_email_and_password("a@example.com", "secret123")
    _admin_record(credential.uid, "a@example.com")
    before = datetime.now(timezone.utc)

    reconciler = SessionReconciler(AuthSession(), users=OfflineUsers())
    user = reconciler.restore_session(credential)

    assert user.id == credential.uid
    assert user.email == "a@example.com"
    assert user.display_name == "User"
    assert user.role == "user"
    assert user.created_at >= before - timedelta(seconds=1)
    assert reconciler.store.current == user


def test_restore_other_failure_publishes_none():
    credential = IdentityProvider().create_user_with_email_and_password("a@example.com", "secret123")
    reconciler = SessionReconciler(AuthSession(), users=BrokenUsers())
    assert reconciler.restore_session(credential) is None


def test_restore_without_record_publishes_none():
    credential = IdentityProvider().create_user_with_email_and_password("a@example.com", "secret123")
    assert SessionReconciler(AuthSession()).restore_session(credential) is None


def test_sign_up_creates_record_and_publishes():
    seen = []
    reconciler = SessionReconciler(AuthSession())
    reconciler.store.subscribe(seen.append)
    reconciler.start()

    user = reconciler.sign_up("New@Example.com", "secret123", "Newbie")

    assert user.role == "user"
    assert user.email == "new@example.com"
    assert user.display_name == "Newbie"
    stored = UserGateway().get(user.id)
    assert (stored.email, stored.display_name, stored.role) == ("new@example.com", "Newbie", "user")
    assert reconciler.auth.current.display_name == "Newbie"
    assert seen[-1] == user
    # the credential change during sign-up is not reconciled a second time
    assert seen == [None, user]


def test_sign_up_record_failure_keeps_provider_credential():
    reconciler = SessionReconciler(AuthSession(), users=BrokenUsers())

    with pytest.raises(GatewayError):
        reconciler.sign_up("gap@example.com", "secret123", "Gap")

    # the identity exists even though the user record does not
    credential = IdentityProvider().sign_in_with_email_and_password("gap@example.com", "secret123")
    assert credential.email == "gap@example.com"
    assert UserGateway().get(credential.uid) is None
    assert reconciler.store.current is None
    assert not reconciler.store.loading


def test_sign_up_duplicate_email():
    SessionReconciler(AuthSession()).sign_up("dup@example.com", "secret123", "One")
    with pytest.raises(IdentityError) as info:
        SessionReconciler(AuthSession()).sign_up("dup@example.com", "secret123", "Two")
    assert info.value.code == "email-already-in-use"


def test_sign_in_with_password():
    SessionReconciler(AuthSession()).sign_up("p@example.com", "secret123", "P")

    reconciler = SessionReconciler(AuthSession())
    user = reconciler.sign_in_with_password("p@example.com", "secret123")

    assert user.email == "p@example.com"
    assert reconciler.store.current == user


def test_sign_in_wrong_password():
    SessionReconciler(AuthSession()).sign_up("p@example.com", "secret123", "P")
    reconciler = SessionReconciler(AuthSession())

    with pytest.raises(IdentityError) as info:
        reconciler.sign_in_with_password("p@example.com", "nope-nope")

    assert info.value.code == "invalid-credential"
    assert reconciler.store.current is None


def test_sign_in_without_record_is_an_error():
    credential = IdentityProvider().create_user_with_email_and_password("orphan@example.com", "secret123")

    with pytest.raises(UserRecordMissing):
        SessionReconciler(AuthSession()).sign_in_with_password("orphan@example.com", "secret123")
    assert UserGateway().get(credential.uid) is None


def test_federated_creates_once_and_keeps_promotion():
    first = SessionReconciler(AuthSession()).sign_in_with_federated_provider(FederatedKind.GOOGLE, FakeConsent())
    assert first.role == "user"
    assert first.display_name == "Fed User"

    assert promote_user("fed@example.com") == 1

    second = SessionReconciler(AuthSession()).sign_in_with_federated_provider("google", FakeConsent())
    assert second.id == first.id
    assert second.role == "admin"
    assert second.created_at == UserGateway().get(first.id).created_at


def test_federated_offline_falls_back_with_notice():
    notices = []
    reconciler = SessionReconciler(AuthSession(), users=OfflineUsers(), notify=notices.append)

    user = reconciler.sign_in_with_federated_provider(FederatedKind.FACEBOOK, FakeConsent(subject="fb-1"))

    assert user.role == "user"
    assert notices == [DEGRADED_NOTICE]
    assert reconciler.store.current == user


def test_federated_email_clash_with_password_account():
    SessionReconciler(AuthSession()).sign_up("fed@example.com", "secret123", "Pw")
    with pytest.raises(IdentityError) as info:
        SessionReconciler(AuthSession()).sign_in_with_federated_provider(FederatedKind.GOOGLE, FakeConsent())
    assert info.value.code == "account-exists-with-different-credential"


def test_end_session_revokes_token_and_publishes_none():
    reconciler = SessionReconciler(AuthSession())
    reconciler.start()
    reconciler.sign_up("bye@example.com", "secret123", "Bye")
    token = reconciler.auth.current.token

    reconciler.end_session()

    assert reconciler.store.current is None
    assert reconciler.auth.current is None
    with pytest.raises(IdentityError) as info:
        IdentityProvider().verify_token(token)
    assert info.value.code == "user-token-expired"


def test_credential_change_event_triggers_restore():
    SessionReconciler(AuthSession()).sign_up("evt@example.com", "secret123", "Evt")
    auth = AuthSession()
    reconciler = SessionReconciler(auth)
    reconciler.start()

    auth.sign_in_with_email_and_password("evt@example.com", "secret123")
    assert reconciler.store.current.email == "evt@example.com"

    auth.sign_out()
    assert reconciler.store.current is None


def test_stale_publish_is_dropped():
    store = SessionStore()
    stale = store._begin()
    fresh = store._begin()
    user = ApplicationUser(id="u", email="u@example.com", role="user", created_at=datetime.now(timezone.utc))

    assert store._publish(user, fresh)
    assert not store._publish(None, stale)
    assert store.current == user


def test_unsubscribe_stops_notifications():
    store = SessionStore()
    seen = []
    unsubscribe = store.subscribe(seen.append)
    store._publish(None, store._begin())
    unsubscribe()
    store._publish(None, store._begin())
    assert seen == [None]


def test_restore_permission_denied_falls_back_to_plain_user():
    credential = IdentityProvider().create_user_with_email_and_password("a@example.com", "secret123")
    _admin_record(credential.uid, "a@example.com")

    user = SessionReconciler(AuthSession(), users=DeniedUsers()).restore_session(credential)

    assert user.id == credential.uid
    assert user.role == "user"


def test_password_sign_in_offline_falls_back_to_plain_user():
    SessionReconciler(AuthSession()).sign_up("p@example.com", "secret123", "P")
    assert promote_user("p@example.com") == 1

    reconciler = SessionReconciler(AuthSession(), users=OfflineUsers())
    user = reconciler.sign_in_with_password("p@example.com", "secret123")

    assert user.email == "p@example.com"
    assert user.display_name == "P"
    assert user.role == "user"
    assert reconciler.store.current == user


def test_federated_permission_denied_falls_back_with_notice():
    notices = []
    reconciler = SessionReconciler(AuthSession(), users=DeniedUsers(), notify=notices.append)

    user = reconciler.sign_in_with_federated_provider(FederatedKind.GOOGLE, FakeConsent())

    assert user.role == "user"
    assert notices == [DEGRADED_NOTICE]


def test_failed_sign_in_clears_previous_admin():
    reconciler = SessionReconciler(AuthSession())
    reconciler.start()
    reconciler.sign_up("boss@example.com", "secret123", "Boss")
    assert promote_user("boss@example.com") == 1
    reconciler.sign_in_with_password("boss@example.com", "secret123")
    assert reconciler.store.is_admin
    IdentityProvider().create_user_with_email_and_password("orphan@example.com", "secret123")

    with pytest.raises(UserRecordMissing):
        reconciler.sign_in_with_password("orphan@example.com", "secret123")

    assert reconciler.auth.current.email == "orphan@example.com"
    assert reconciler.store.current is None
    assert not reconciler.store.is_admin


def test_first_sign_in_failure_ends_loading():
    IdentityProvider().create_user_with_email_and_password("orphan@example.com", "secret123")
    reconciler = SessionReconciler(AuthSession())
    assert reconciler.store.loading

    with pytest.raises(UserRecordMissing):
        reconciler.sign_in_with_password("orphan@example.com", "secret123")

    assert not reconciler.store.loading
    assert reconciler.store.current is None


def test_password_sign_in_store_failure_publishes_none():
    SessionReconciler(AuthSession()).sign_up("p@example.com", "secret123", "P")
    reconciler = SessionReconciler(AuthSession(), users=BrokenUsers())

    with pytest.raises(GatewayError):
        reconciler.sign_in_with_password("p@example.com", "secret123")

    assert reconciler.store.current is None
    assert not reconciler.store.loading


def test_federated_store_failure_publishes_none():
    reconciler = SessionReconciler(AuthSession(), users=BrokenUsers())

    with pytest.raises(GatewayError):
        reconciler.sign_in_with_federated_provider(FederatedKind.GOOGLE, FakeConsent())

    assert reconciler.store.current is None
    assert not reconciler.store.loading
