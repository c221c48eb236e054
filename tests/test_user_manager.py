"""Tests for the SQLite user store."""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from core.accounts.rbac import ADMIN, USER, Principal, can
from core.accounts.user_manager import AccountError, UserStore


class TestUsers:
    """Account CRUD and credential checks."""

    def test_add_and_verify(self, users):
        created = users.add_user('alice', 'correct-horse', USER)

        assert created['username'] == 'alice'
        assert created['role'] == USER
        assert 'password_hash' not in created
        assert users.verify_credentials('alice', 'correct-horse')['id'] == created['id']

    def test_username_lookup_is_case_insensitive(self, users):
        users.add_user('Alice', 'correct-horse')

        assert users.verify_credentials('ALICE', 'correct-horse') is not None

    def test_wrong_password(self, users):
        users.add_user('alice', 'correct-horse')

        assert users.verify_credentials('alice', 'wrong-horse') is None
        assert users.verify_credentials('nobody', 'correct-horse') is None

    @pytest.mark.parametrize('username', ['', 'has space', 'semi;colon', 'x' * 65])
    def test_bad_username(self, users, username):
        with pytest.raises(AccountError) as exc:
            users.add_user(username, 'correct-horse')
        assert exc.value.kind == 'invalid_input'

    @pytest.mark.parametrize('password', ['short', 'p' * 129])
    def test_bad_password(self, users, password):
        with pytest.raises(AccountError) as exc:
            users.add_user('bob', password)
        assert exc.value.kind == 'invalid_input'

    def test_unknown_role(self, users):
        with pytest.raises(AccountError):
            users.add_user('bob', 'correct-horse', 'superuser')

    def test_duplicate(self, users):
        users.add_user('bob', 'correct-horse')

        with pytest.raises(AccountError) as exc:
            users.add_user('BOB', 'other-password')
        assert exc.value.kind == 'conflict'

    def test_list_sorted(self, users):
        for name in ['carol', 'alice', 'Bob']:
            users.add_user(name, 'correct-horse')

        assert [u['username'] for u in users.list_users()] == ['alice', 'Bob', 'carol']

    def test_delete(self, users):
        uid = users.add_user('bob', 'correct-horse')['id']

        users.delete_user(uid)

        assert users.get_user(uid) is None
        with pytest.raises(AccountError) as exc:
            users.delete_user(uid)
        assert exc.value.kind == 'not_found'

    def test_deactivated_user_cannot_log_in(self, users):
        uid = users.add_user('bob', 'correct-horse')['id']

        users.set_active(uid, False)

        assert users.verify_credentials('bob', 'correct-horse') is None

    def test_ensure_admin_only_on_empty_table(self, users):
        assert users.ensure_admin('root', 'root-password') is True
        assert users.ensure_admin('root2', 'root-password') is False
        assert [u['role'] for u in users.list_users()] == [ADMIN]

    def test_persists_across_instances(self, tmp_path):
        path = str(tmp_path / 'persist.db')
        first = UserStore(path, hash_rounds=4)
        first.add_user('alice', 'correct-horse')
        first.close()

        second = UserStore(path, hash_rounds=4)
        try:
            assert second.verify_credentials('alice', 'correct-horse') is not None
        finally:
            second.close()

    def test_other_threads_get_their_own_connection(self, users):
        users.add_user('alice', 'correct-horse')
        seen = []

        def worker():
            seen.append(users.verify_credentials('alice', 'correct-horse') is not None)
            users.add_user('from-thread', 'correct-horse')

        t = threading.Thread(target=worker)
        t.start()
        t.join()

        assert seen == [True]
        assert users.get_user_by_name('from-thread') is not None


class TestSessions:
    """Token session bookkeeping."""

    def _future(self, hours=1):
        return datetime.now(timezone.utc) + timedelta(hours=hours)

    def test_recorded_session_is_active(self, users):
        uid = users.add_user('alice', 'correct-horse')['id']
        users.record_session(uid, 'tok-1', self._future())

        assert users.is_session_active('tok-1') is True
        assert users.is_session_active('tok-unknown') is False

    def test_revoke(self, users):
        uid = users.add_user('alice', 'correct-horse')['id']
        users.record_session(uid, 'tok-1', self._future())

        assert users.revoke_session('tok-1') is True
        assert users.is_session_active('tok-1') is False
        assert users.revoke_session('tok-1') is False

    def test_revoke_all_for_user(self, users):
        uid = users.add_user('alice', 'correct-horse')['id']
        users.record_session(uid, 'tok-1', self._future())
        users.record_session(uid, 'tok-2', self._future())

        assert users.revoke_user_sessions(uid) == 2
        assert not users.is_session_active('tok-2')

    def test_expired_session_inactive_and_cleaned(self, users):
        uid = users.add_user('alice', 'correct-horse')['id']
        users.record_session(uid, 'old', self._future(hours=-1))
        users.record_session(uid, 'new', self._future())

        assert users.is_session_active('old') is False
        assert users.cleanup_expired_sessions() == 1
        assert users.is_session_active('new') is True

    def test_deactivation_kills_sessions(self, users):
        uid = users.add_user('alice', 'correct-horse')['id']
        users.record_session(uid, 'tok-1', self._future())

        users.set_active(uid, False)

        assert users.is_session_active('tok-1') is False

    def test_deleting_user_drops_sessions(self, users):
        uid = users.add_user('alice', 'correct-horse')['id']
        users.record_session(uid, 'tok-1', self._future())

        users.delete_user(uid)

        assert users.is_session_active('tok-1') is False


class TestRbac:
    """Role gate for admin-only actions."""

    def test_admin_can_manage_users(self):
        assert can(Principal('1', 'root', ADMIN), 'users.create')

    def test_user_cannot_manage_users(self):
        assert not can(Principal('2', 'bob', USER), 'users.delete')

    def test_user_can_do_ordinary_actions(self):
        assert can(Principal('2', 'bob', USER), 'files.upload')
