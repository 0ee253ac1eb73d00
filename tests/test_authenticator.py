"""Unit tests for auth/authenticator.py.

Covers:
- Login by username or by email; last_login stamped on success only
- Every failure cause (unknown user, wrong password, missing credential)
  raises the same AuthFailure with the same message
- bcrypt runs even when the user does not exist (timing equalization)
- StorageError propagates instead of turning into AuthFailure
- verify(): valid token -> current User; deleted user, expired or bad token -> None
"""

from unittest.mock import patch

import pytest

from auth.models import User
from auth.passwords import verify_password
from core.errors import AuthFailure, StorageError

# ---------------------------------------------------------------------------
# TestLoginSuccess
# ---------------------------------------------------------------------------


class TestLoginSuccess:
    def test_login_by_username(self, auth_context, admin):
        session = auth_context.authenticator.login("admin", "admin123")
        assert session.user.id == admin.id
        assert session.user.role == "admin"
        assert session.token
        assert session.expires_at

    def test_login_by_email(self, auth_context, editor):
        session = auth_context.authenticator.login("ed@x.com", "pw123456")
        assert session.user.username == "ed"

    def test_login_stamps_last_login(self, auth_context, editor):
        assert auth_context.directory.find_by_id(editor.id).last_login is None
        session = auth_context.authenticator.login("ed", "pw123456")
        stored = auth_context.directory.find_by_id(editor.id)
        assert stored.last_login is not None
        assert stored.last_login == session.user.last_login

    def test_session_token_verifies_to_user(self, auth_context, editor):
        session = auth_context.authenticator.login("ed", "pw123456")
        user = auth_context.authenticator.verify(session.token)
        assert user is not None
        assert user.id == editor.id

    def test_expires_at_matches_token(self, auth_context, editor):
        session = auth_context.authenticator.login("ed", "pw123456")
        claims = auth_context.tokens.verify(session.token)
        assert session.expires_at == claims.expires_at.isoformat()


# ---------------------------------------------------------------------------
# TestLoginFailure
# ---------------------------------------------------------------------------


class TestLoginFailure:
    def _failure_message(self, auth_context, username, password) -> str:
        with pytest.raises(AuthFailure) as excinfo:
            auth_context.authenticator.login(username, password)
        return excinfo.value.message

    def test_all_failures_look_identical(self, auth_context, editor):
        # A user with no credential row at all.
        auth_context.directory.insert(User(id="orphan", username="orphan", email="o@x.com", role="editor"))
        messages = {
            self._failure_message(auth_context, "nobody", "pw123456"),
            self._failure_message(auth_context, "ed", "wrong-password"),
            self._failure_message(auth_context, "orphan", "pw123456"),
        }
        assert len(messages) == 1

    def test_username_is_case_sensitive(self, auth_context, editor):
        with pytest.raises(AuthFailure):
            auth_context.authenticator.login("ED", "pw123456")

    def test_empty_password(self, auth_context, editor):
        with pytest.raises(AuthFailure):
            auth_context.authenticator.login("ed", "")

    def test_failure_does_not_touch_last_login(self, auth_context, editor):
        with pytest.raises(AuthFailure):
            auth_context.authenticator.login("ed", "wrong-password")
        assert auth_context.directory.find_by_id(editor.id).last_login is None

    def test_unknown_user_still_runs_bcrypt(self, auth_context, admin):
        with patch("auth.authenticator.verify_password", wraps=verify_password) as spy:
            with pytest.raises(AuthFailure):
                auth_context.authenticator.login("nobody", "pw123456")
        assert spy.call_count == 1

    def test_storage_error_is_not_auth_failure(self, auth_context, editor):
        with patch.object(auth_context.credentials, "get", side_effect=StorageError()):
            with pytest.raises(StorageError):
                auth_context.authenticator.login("ed", "pw123456")


# ---------------------------------------------------------------------------
# TestVerify
# ---------------------------------------------------------------------------


class TestVerify:
    def test_deleted_user_token_rejected(self, auth_context, admin, editor):
        token = auth_context.authenticator.login("ed", "pw123456").token
        auth_context.users.delete_user(admin, editor.id)
        assert auth_context.authenticator.verify(token) is None

    def test_expired_token_rejected(self, auth_context, editor):
        token = auth_context.tokens.issue(editor.id, editor.role, ttl_seconds=-5).token
        assert auth_context.authenticator.verify(token) is None

    def test_garbage_rejected(self, auth_context):
        assert auth_context.authenticator.verify("not-a-token") is None

    def test_verify_returns_stored_role(self, auth_context, editor):
        # A token claiming admin for an editor still resolves to the editor record.
        token = auth_context.tokens.issue(editor.id, "admin").token
        user = auth_context.authenticator.verify(token)
        assert user.role == "editor"
