"""
tests/test_auth_service.py -- Unit tests for AuthService use cases.

Runs against a fresh in-memory store per test; no HTTP involved.

Covers:
  - Email case-insensitivity for sign-up, duplicate detection and sign-in
  - Registration validation (short password, malformed email)
  - One InvalidCredentials for unknown email and wrong password
  - verify(): deleted user, revocation-aware mode
  - refresh() after sign-out -> SessionNotFound; refresh touches the session
  - sign_out() idempotence and ownership check
  - change_password() revokes every session
  - resolve_user(): token first, session fallback
"""

from __future__ import annotations

import pytest

from auth.errors import InvalidCredentials, InvalidToken, SessionNotFound, ValidationError
from auth.models import Role
from auth.service import AuthService, normalize_email
from auth.store import SessionStore, UserStore
from auth.tokens import TokenService

PASSWORD = "password123"


def _service(store: UserStore, **kwargs) -> AuthService:
    sessions = SessionStore(store.engine)
    tokens = TokenService("s" * 48, issuer="passport.oceanheart.ai")
    return AuthService(store, sessions, tokens, **kwargs)


@pytest.fixture
def service(user_store: UserStore) -> AuthService:
    return _service(user_store)


def test_normalize_email() -> None:
    assert normalize_email("  User@Example.COM ") == "user@example.com"
    assert normalize_email("") == ""


class TestSignUp:
    def test_email_is_case_insensitive(self, service: AuthService) -> None:
        result = service.sign_up("User@Example.com", PASSWORD)
        assert result.user.email == "user@example.com"
        assert result.user.role is Role.user

        signed_in = service.sign_in("user@example.com", PASSWORD)
        assert signed_in.user.id == result.user.id

        for duplicate in ("user@example.com", "USER@EXAMPLE.COM"):
            with pytest.raises(ValidationError):
                service.sign_up(duplicate, PASSWORD)

    def test_sign_up_opens_session_and_token(self, service: AuthService) -> None:
        result = service.sign_up("a@example.com", PASSWORD, ip_address="203.0.113.7", user_agent="pytest")
        assert service.sessions.find(result.session.id).user_id == result.user.id
        assert result.session.ip_address == "203.0.113.7"
        assert service.tokens.verify(result.token).user_id == result.user.id

    def test_short_password_rejected(self, service: AuthService) -> None:
        with pytest.raises(ValidationError):
            service.sign_up("a@example.com", "short")
        assert service.users.get_by_email("a@example.com") is None

    def test_min_length_is_configurable(self, user_store: UserStore) -> None:
        service = _service(user_store, min_password_length=12)
        with pytest.raises(ValidationError):
            service.sign_up("a@example.com", "elevenchars")

    def test_overlong_password_rejected(self, service: AuthService) -> None:
        with pytest.raises(ValidationError):
            service.sign_up("a@example.com", "x" * 73)

    @pytest.mark.parametrize("email", ["", "no-at-sign", "a@b", "two@@example.com", "sp ace@example.com"])
    def test_malformed_email_rejected(self, service: AuthService, email: str) -> None:
        with pytest.raises(ValidationError):
            service.sign_up(email, PASSWORD)

    def test_register_with_role(self, service: AuthService) -> None:
        user = service.register("root@example.com", PASSWORD, role=Role.admin)
        assert user.is_admin
        assert service.users.get_by_id(user.id).is_admin


class TestSignIn:
    def test_unknown_email_and_wrong_password_look_the_same(self, service: AuthService) -> None:
        service.sign_up("a@example.com", PASSWORD)
        with pytest.raises(InvalidCredentials) as unknown:
            service.sign_in("nobody@example.com", PASSWORD)
        with pytest.raises(InvalidCredentials) as wrong:
            service.sign_in("a@example.com", "wrong-password")
        assert unknown.value.message == wrong.value.message
        assert unknown.value.code == wrong.value.code

    def test_each_sign_in_opens_a_new_session(self, service: AuthService) -> None:
        first = service.sign_up("a@example.com", PASSWORD)
        second = service.sign_in("a@example.com", PASSWORD)
        assert first.session.id != second.session.id
        assert service.sessions.count_live_for_user(first.user.id) == 2


class TestVerify:
    def test_valid_token(self, service: AuthService) -> None:
        result = service.sign_up("a@example.com", PASSWORD)
        assert service.verify(result.token).id == result.user.id

    def test_deleted_user_rejected(self, service: AuthService) -> None:
        result = service.sign_up("a@example.com", PASSWORD)
        service.users.delete_user(result.user.id)
        with pytest.raises(InvalidToken):
            service.verify(result.token)

    def test_token_outlives_sign_out_by_default(self, service: AuthService) -> None:
        result = service.sign_up("a@example.com", PASSWORD)
        service.sign_out(result.session.id)
        assert service.verify(result.token).id == result.user.id

    def test_revocation_aware_mode(self, user_store: UserStore) -> None:
        service = _service(user_store, verify_requires_session=True)
        result = service.sign_up("a@example.com", PASSWORD)
        assert service.verify(result.token, result.session.id).id == result.user.id
        assert service.verify(result.token).id == result.user.id

        service.sign_out(result.session.id)
        with pytest.raises(InvalidToken):
            service.verify(result.token, result.session.id)
        with pytest.raises(InvalidToken):
            service.verify(result.token)

    def test_revocation_aware_mode_rejects_foreign_session(self, user_store: UserStore) -> None:
        service = _service(user_store, verify_requires_session=True)
        mine = service.sign_up("a@example.com", PASSWORD)
        theirs = service.sign_up("b@example.com", PASSWORD)
        with pytest.raises(InvalidToken):
            service.verify(mine.token, theirs.session.id)


class TestRefreshAndSignOut:
    def test_refresh_issues_token_for_live_session(self, service: AuthService) -> None:
        result = service.sign_up("a@example.com", PASSWORD)
        refreshed = service.refresh(result.session.id)
        assert refreshed.session.id == result.session.id
        assert service.verify(refreshed.token).id == result.user.id

    def test_refresh_after_sign_out(self, service: AuthService) -> None:
        result = service.sign_up("a@example.com", PASSWORD)
        service.sign_out(result.session.id)
        with pytest.raises(SessionNotFound):
            service.refresh(result.session.id)

    @pytest.mark.parametrize("session_id", [None, "", "unknown"])
    def test_refresh_without_session(self, service: AuthService, session_id) -> None:
        with pytest.raises(SessionNotFound):
            service.refresh(session_id)

    def test_sign_out_twice_is_a_no_op(self, service: AuthService) -> None:
        result = service.sign_up("a@example.com", PASSWORD)
        service.sign_out(result.session.id)
        service.sign_out(result.session.id)
        service.sign_out(None)

    def test_sign_out_ignores_foreign_session(self, service: AuthService) -> None:
        mine = service.sign_up("a@example.com", PASSWORD)
        theirs = service.sign_up("b@example.com", PASSWORD)
        service.sign_out(theirs.session.id, user_id=mine.user.id)
        assert service.sessions.find(theirs.session.id).user_id == theirs.user.id

    def test_sign_out_everywhere(self, service: AuthService) -> None:
        result = service.sign_up("a@example.com", PASSWORD)
        service.sign_in("a@example.com", PASSWORD)
        assert service.sign_out_everywhere(result.user.id) == 2
        assert service.sessions.count_live_for_user(result.user.id) == 0


class TestChangePassword:
    def test_change_revokes_every_session(self, service: AuthService) -> None:
        result = service.sign_up("a@example.com", PASSWORD)
        service.sign_in("a@example.com", PASSWORD)

        service.change_password(result.user, PASSWORD, "new-password-456")

        assert service.sessions.count_live_for_user(result.user.id) == 0
        with pytest.raises(InvalidCredentials):
            service.sign_in("a@example.com", PASSWORD)
        assert service.sign_in("a@example.com", "new-password-456").user.id == result.user.id

    def test_wrong_current_password(self, service: AuthService) -> None:
        result = service.sign_up("a@example.com", PASSWORD)
        with pytest.raises(InvalidCredentials):
            service.change_password(result.user, "not-it-at-all", "new-password-456")
        assert service.sessions.count_live_for_user(result.user.id) == 1

    def test_new_password_too_short(self, service: AuthService) -> None:
        result = service.sign_up("a@example.com", PASSWORD)
        with pytest.raises(ValidationError):
            service.change_password(result.user, PASSWORD, "short")


class TestResolveUser:
    def test_token_wins(self, service: AuthService) -> None:
        result = service.sign_up("a@example.com", PASSWORD)
        assert service.resolve_user(result.token, None).id == result.user.id

    def test_session_fallback_when_token_invalid(self, service: AuthService) -> None:
        result = service.sign_up("a@example.com", PASSWORD)
        assert service.resolve_user("garbage", result.session.id).id == result.user.id

    def test_nothing_resolves_to_none(self, service: AuthService) -> None:
        assert service.resolve_user(None, None) is None
        assert service.resolve_user("garbage", "unknown") is None
