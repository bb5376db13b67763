"""
tests/test_session_store.py -- Unit tests for UserStore and SessionStore.

SessionStore takes an injectable clock, so TTL expiry is tested by moving a
fake clock forward instead of sleeping.

Covers:
  - create/find round trip; ids are unguessable and unique
  - find() raises SessionNotFound for missing and expired rows alike
  - delete() is a no-op the second time
  - delete_expired() removes only stale rows and is idempotent
  - delete_user() removes the user's sessions in the same transaction
  - email uniqueness enforced by the UNIQUE constraint
"""

from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError

from auth.errors import SessionNotFound
from auth.models import Role, User
from auth.store import SessionStore, UserStore


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sessions(user_store: UserStore, clock: FakeClock) -> SessionStore:
    return SessionStore(user_store.engine, ttl_seconds=60, clock=clock)


def _user(store: UserStore, email: str = "a@example.com", role: Role = Role.user) -> User:
    user = User(email=email, password_hash="x", role=role)
    user.id = store.create_user(user)
    return user


class TestUserStore:
    def test_create_and_lookup(self, user_store: UserStore) -> None:
        user = _user(user_store)
        by_email = user_store.get_by_email("a@example.com")
        by_id = user_store.get_by_id(user.id)
        assert by_email is not None and by_id is not None
        assert by_email.id == by_id.id == user.id
        assert by_email.role is Role.user
        assert by_email.created_at

    def test_duplicate_email_rejected(self, user_store: UserStore) -> None:
        _user(user_store)
        with pytest.raises(IntegrityError):
            _user(user_store)

    def test_update_role_and_count_admins(self, user_store: UserStore) -> None:
        user = _user(user_store)
        assert user_store.count_admins() == 0
        assert user_store.update_user(user.id, role=Role.admin)
        assert user_store.get_by_id(user.id).is_admin
        assert user_store.count_admins() == 1

    def test_update_rejects_unknown_fields(self, user_store: UserStore) -> None:
        user = _user(user_store)
        with pytest.raises(ValueError):
            user_store.update_user(user.id, email="b@example.com")

    def test_update_missing_user(self, user_store: UserStore) -> None:
        assert user_store.update_user(9999, role=Role.admin) is False

    def test_has_users_and_ping(self, user_store: UserStore) -> None:
        assert user_store.ping()
        assert not user_store.has_users()
        _user(user_store)
        assert user_store.has_users()

    def test_delete_user_removes_sessions(self, user_store: UserStore, sessions: SessionStore) -> None:
        user = _user(user_store)
        other = _user(user_store, "b@example.com")
        s1 = sessions.create(user.id)
        sessions.create(user.id)
        kept = sessions.create(other.id)

        assert user_store.delete_user(user.id)
        assert user_store.get_by_id(user.id) is None
        with pytest.raises(SessionNotFound):
            sessions.find(s1.id)
        assert sessions.find(kept.id).user_id == other.id
        assert user_store.delete_user(user.id) is False


class TestSessionStore:
    def test_create_and_find(self, user_store: UserStore, sessions: SessionStore) -> None:
        user = _user(user_store)
        created = sessions.create(user.id, ip_address="203.0.113.7", user_agent="pytest")
        found = sessions.find(created.id)
        assert found == created
        assert len(created.id) >= 40

    def test_ids_are_unique(self, user_store: UserStore, sessions: SessionStore) -> None:
        user = _user(user_store)
        ids = {sessions.create(user.id).id for _ in range(20)}
        assert len(ids) == 20

    def test_missing_and_empty_ids(self, sessions: SessionStore) -> None:
        with pytest.raises(SessionNotFound):
            sessions.find("does-not-exist")
        with pytest.raises(SessionNotFound):
            sessions.find("")

    def test_expired_session_is_not_found(
        self, user_store: UserStore, sessions: SessionStore, clock: FakeClock
    ) -> None:
        user = _user(user_store)
        session = sessions.create(user.id)
        clock.advance(60)
        assert sessions.find(session.id).id == session.id
        clock.advance(1)
        with pytest.raises(SessionNotFound):
            sessions.find(session.id)

    def test_touch_updates_timestamp(self, user_store: UserStore, sessions: SessionStore, clock: FakeClock) -> None:
        user = _user(user_store)
        session = sessions.create(user.id)
        clock.advance(5)
        assert sessions.touch(session.id)
        found = sessions.find(session.id)
        assert found.updated_at == session.updated_at + 5
        assert found.created_at == session.created_at

    def test_delete_is_idempotent(self, user_store: UserStore, sessions: SessionStore) -> None:
        user = _user(user_store)
        session = sessions.create(user.id)
        assert sessions.delete(session.id) is True
        assert sessions.delete(session.id) is False
        assert sessions.delete("") is False

    def test_delete_all_for_user(self, user_store: UserStore, sessions: SessionStore) -> None:
        user = _user(user_store)
        other = _user(user_store, "b@example.com")
        for _ in range(3):
            sessions.create(user.id)
        sessions.create(other.id)
        assert sessions.delete_all_for_user(user.id) == 3
        assert sessions.count_live_for_user(user.id) == 0
        assert sessions.count_live_for_user(other.id) == 1

    def test_delete_expired_is_idempotent(
        self, user_store: UserStore, sessions: SessionStore, clock: FakeClock
    ) -> None:
        user = _user(user_store)
        stale = sessions.create(user.id)
        clock.advance(61)
        fresh = sessions.create(user.id)

        assert sessions.delete_expired() == 1
        assert sessions.delete_expired() == 0
        assert sessions.find(fresh.id).id == fresh.id
        assert sessions.delete(stale.id) is False

    def test_delete_expired_with_explicit_cutoff(
        self, user_store: UserStore, sessions: SessionStore, clock: FakeClock
    ) -> None:
        user = _user(user_store)
        sessions.create(user.id)
        assert sessions.delete_expired(older_than=clock.now + 1) == 1

    def test_list_for_user_newest_first(
        self, user_store: UserStore, sessions: SessionStore, clock: FakeClock
    ) -> None:
        user = _user(user_store)
        first = sessions.create(user.id)
        clock.advance(1)
        second = sessions.create(user.id)
        assert [s.id for s in sessions.list_for_user(user.id)] == [second.id, first.id]

    def test_session_requires_existing_user(self, sessions: SessionStore) -> None:
        with pytest.raises(IntegrityError):
            sessions.create(12345)
