"""Unit tests for auth/users.py (UserManager).

Covers:
- Admin-only authorization on list/create/delete
- create_user: conflicts, password policy, role validation, rollback when the
  credential write fails
- delete_user: not found, last-admin protection, credential removed,
  credential restored when the directory delete fails
- change_password re-verifies the old password; reset_password does not
- bootstrap: configured password, generated password, idempotence
- Concurrency: parallel creates, duplicate creates, racing password changes,
  racing admin deletes
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest

from auth.context import build_auth_context
from core.errors import (
    AuthFailure,
    ConflictError,
    InvariantViolation,
    NotFoundError,
    PasswordPolicyError,
    PermissionDenied,
    StorageError,
)

from conftest import make_settings

# ---------------------------------------------------------------------------
# TestAuthorization
# ---------------------------------------------------------------------------


class TestAuthorization:
    def test_editor_cannot_list(self, auth_context, editor):
        with pytest.raises(PermissionDenied):
            auth_context.users.list_users(editor)

    def test_editor_cannot_create(self, auth_context, editor):
        with pytest.raises(PermissionDenied):
            auth_context.users.create_user(editor, "x", "x@x.com", "pw123456", "editor")
        assert auth_context.directory.find_by_username_or_email("x") is None

    def test_editor_cannot_delete(self, auth_context, admin, editor):
        with pytest.raises(PermissionDenied):
            auth_context.users.delete_user(editor, admin.id)

    def test_admin_lists_everyone(self, auth_context, admin, editor):
        names = {u.username for u in auth_context.users.list_users(admin)}
        assert names == {"admin", "ed"}


# ---------------------------------------------------------------------------
# TestCreateUser
# ---------------------------------------------------------------------------


class TestCreateUser:
    def test_creates_user_and_credential(self, auth_context, admin):
        user = auth_context.users.create_user(admin, "ed", "ed@x.com", "pw123456", "editor")
        assert auth_context.directory.find_by_id(user.id).role == "editor"
        assert auth_context.credentials.get(user.id) is not None
        assert auth_context.credentials.get(user.id) != "pw123456"

    def test_duplicate_username(self, auth_context, admin, editor):
        with pytest.raises(ConflictError):
            auth_context.users.create_user(admin, "ed", "other@x.com", "pw123456", "editor")
        assert len([u for u in auth_context.directory.list_all() if u.username == "ed"]) == 1

    def test_duplicate_email(self, auth_context, admin, editor):
        with pytest.raises(ConflictError):
            auth_context.users.create_user(admin, "eddie", "ed@x.com", "pw123456", "editor")

    def test_short_password_creates_nothing(self, auth_context, admin):
        with pytest.raises(PasswordPolicyError):
            auth_context.users.create_user(admin, "ed", "ed@x.com", "short", "editor")
        assert auth_context.directory.find_by_username_or_email("ed") is None

    def test_unknown_role(self, auth_context, admin):
        with pytest.raises(ValueError):
            auth_context.users.create_user(admin, "ed", "ed@x.com", "pw123456", "owner")

    def test_credential_failure_rolls_back_user(self, auth_context, admin):
        with patch.object(auth_context.credentials, "set", side_effect=StorageError()):
            with pytest.raises(StorageError):
                auth_context.users.create_user(admin, "ed", "ed@x.com", "pw123456", "editor")
        assert auth_context.directory.find_by_username_or_email("ed") is None


# ---------------------------------------------------------------------------
# TestDeleteUser
# ---------------------------------------------------------------------------


class TestDeleteUser:
    def test_delete_removes_user_and_credential(self, auth_context, admin, editor):
        auth_context.users.delete_user(admin, editor.id)
        assert auth_context.directory.find_by_id(editor.id) is None
        assert auth_context.credentials.get(editor.id) is None

    def test_delete_missing(self, auth_context, admin):
        with pytest.raises(NotFoundError):
            auth_context.users.delete_user(admin, "missing")

    def test_last_admin_cannot_be_deleted(self, auth_context, admin):
        with pytest.raises(InvariantViolation):
            auth_context.users.delete_user(admin, admin.id)
        assert auth_context.directory.find_by_id(admin.id) is not None
        assert auth_context.credentials.get(admin.id) is not None

    def test_admin_deletable_when_another_exists(self, auth_context, admin):
        second = auth_context.users.create_user(admin, "root", "root@x.com", "pw123456", "admin")
        auth_context.users.delete_user(second, admin.id)
        assert auth_context.directory.count_admins() == 1

    def test_directory_failure_restores_credential(self, auth_context, admin, editor):
        original = auth_context.credentials.get(editor.id)
        with patch.object(auth_context.directory, "remove", side_effect=StorageError()):
            with pytest.raises(StorageError):
                auth_context.users.delete_user(admin, editor.id)
        assert auth_context.directory.find_by_id(editor.id) is not None
        assert auth_context.credentials.get(editor.id) == original


# ---------------------------------------------------------------------------
# TestPasswords
# ---------------------------------------------------------------------------


class TestPasswordChanges:
    def test_change_password(self, auth_context, editor):
        auth_context.users.change_password(editor.id, "pw123456", "n3w-password")
        with pytest.raises(AuthFailure):
            auth_context.authenticator.login("ed", "pw123456")
        assert auth_context.authenticator.login("ed", "n3w-password").user.id == editor.id

    def test_change_password_wrong_old(self, auth_context, editor):
        with pytest.raises(AuthFailure):
            auth_context.users.change_password(editor.id, "wrong-old", "n3w-password")
        assert auth_context.authenticator.login("ed", "pw123456")

    def test_change_password_unknown_user(self, auth_context):
        with pytest.raises(AuthFailure):
            auth_context.users.change_password("missing", "pw123456", "n3w-password")

    def test_change_password_policy(self, auth_context, editor):
        with pytest.raises(PasswordPolicyError):
            auth_context.users.change_password(editor.id, "pw123456", "short")

    def test_reset_password(self, auth_context, editor):
        auth_context.users.reset_password(editor.id, "reset-pass-1")
        assert auth_context.authenticator.login("ed", "reset-pass-1")

    def test_reset_password_unknown_user(self, auth_context):
        with pytest.raises(NotFoundError):
            auth_context.users.reset_password("missing", "reset-pass-1")


# ---------------------------------------------------------------------------
# TestBootstrap
# ---------------------------------------------------------------------------


class TestBootstrap:
    def test_configured_password_is_not_returned(self, auth_context):
        result = auth_context.users.bootstrap()
        assert result.created is True
        assert result.generated_password is None
        assert auth_context.authenticator.login("admin", "admin123").user.role == "admin"

    def test_bootstrap_is_idempotent(self, auth_context):
        assert auth_context.users.bootstrap().created is True
        assert auth_context.users.bootstrap().created is False
        assert len(auth_context.directory.list_all()) == 1

    def test_no_bootstrap_once_users_exist(self, auth_context, admin):
        auth_context.users.reset_password(admin.id, "changed-pass")
        assert auth_context.users.bootstrap().created is False
        with pytest.raises(AuthFailure):
            auth_context.authenticator.login("admin", "admin123")

    def test_lost_race_reports_not_created(self, auth_context):
        # Another process stored the first credential after the has_any() check.
        with patch.object(auth_context.credentials, "bootstrap", return_value=False):
            result = auth_context.users.bootstrap()
        assert result.created is False
        assert result.generated_password is None

    def test_generated_password(self, tmp_path):
        ctx = build_auth_context(make_settings(tmp_path, bootstrap_admin_password=""))
        try:
            result = ctx.users.bootstrap()
            assert result.created is True
            generated = result.generated_password
            assert generated
            assert ctx.authenticator.login("admin", generated).user.role == "admin"
        finally:
            ctx.close()

    def test_custom_bootstrap_identity(self, tmp_path):
        settings = make_settings(
            tmp_path,
            bootstrap_admin_username="owner",
            bootstrap_admin_email="owner@blog.example",
        )
        ctx = build_auth_context(settings)
        try:
            ctx.users.bootstrap()
            assert ctx.authenticator.login("owner@blog.example", "admin123").user.username == "owner"
        finally:
            ctx.close()


# ---------------------------------------------------------------------------
# TestConcurrency
# ---------------------------------------------------------------------------


class TestConcurrency:
    def test_parallel_creates_all_succeed(self, auth_context, admin):
        def create(i):
            return auth_context.users.create_user(admin, f"user{i}", f"user{i}@x.com", "pw123456", "editor")

        with ThreadPoolExecutor(max_workers=8) as pool:
            created = list(pool.map(create, range(8)))

        assert len({u.id for u in created}) == 8
        assert len(auth_context.directory.list_all()) == 9
        for u in created:
            assert auth_context.credentials.get(u.id) is not None

    def test_duplicate_creates_exactly_one_wins(self, auth_context, admin):
        start = threading.Barrier(6)

        def create(i):
            start.wait()
            try:
                auth_context.users.create_user(admin, "dup", f"dup{i}@x.com", "pw123456", "editor")
                return "ok"
            except ConflictError:
                return "conflict"

        with ThreadPoolExecutor(max_workers=6) as pool:
            outcomes = list(pool.map(create, range(6)))

        assert outcomes.count("ok") == 1
        assert outcomes.count("conflict") == 5
        dup = auth_context.directory.find_by_username_or_email("dup")
        assert auth_context.credentials.get(dup.id) is not None
        assert len([u for u in auth_context.directory.list_all() if u.username == "dup"]) == 1

    def test_racing_password_changes_accept_old_password_once(self, auth_context, editor):
        for round_no in range(5):
            auth_context.users.reset_password(editor.id, "pw123456")
            start = threading.Barrier(2)

            def change(new_password):
                start.wait()
                try:
                    auth_context.users.change_password(editor.id, "pw123456", new_password)
                    return new_password
                except AuthFailure:
                    return None

            candidates = [f"round{round_no}-first", f"round{round_no}-second"]
            with ThreadPoolExecutor(max_workers=2) as pool:
                outcomes = list(pool.map(change, candidates))

            winners = [o for o in outcomes if o is not None]
            assert len(winners) == 1, outcomes
            assert auth_context.authenticator.login("ed", winners[0]).user.id == editor.id
            with pytest.raises(AuthFailure):
                auth_context.authenticator.login("ed", "pw123456")

    def test_racing_admin_deletes_keep_one_admin(self, auth_context, admin):
        second = auth_context.users.create_user(admin, "root", "root@x.com", "pw123456", "admin")
        start = threading.Barrier(2)

        def delete(actor, target_id):
            start.wait()
            try:
                auth_context.users.delete_user(actor, target_id)
                return "deleted"
            except InvariantViolation:
                return "refused"

        with ThreadPoolExecutor(max_workers=2) as pool:
            a = pool.submit(delete, admin, second.id)
            b = pool.submit(delete, second, admin.id)
            outcomes = sorted([a.result(), b.result()])

        assert outcomes == ["deleted", "refused"]
        assert auth_context.directory.count_admins() == 1
