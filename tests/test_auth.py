"""Tests for password hashing and session-based auth."""

from datetime import datetime, timedelta, timezone

import pytest

from tradejournal.auth.session_auth import SessionAuth, hash_password, verify_password
from tradejournal.utils.exceptions import AuthenticationError, ValidationError


@pytest.fixture
def auth(store):
    return SessionAuth(store)


class TestPasswordHashing:

    def test_verify(self):
        stored = hash_password("correct horse", pepper="p")
        assert verify_password("correct horse", stored, pepper="p")
        assert not verify_password("wrong horse", stored, pepper="p")
        assert not verify_password("correct horse", stored, pepper="other")

    def test_salted(self):
        assert hash_password("same-password") != hash_password("same-password")

    def test_malformed_hash(self):
        assert not verify_password("anything", "")


class TestRegister:

    def test_register_and_login(self, auth, store):
        user = auth.register("New@Trader.io", "longenough", name="New")
        assert user.email == "new@trader.io"
        assert "longenough" not in store.get_user(user.id).password_hash
        token = auth.login("new@trader.io", "longenough")
        assert auth.get_session_user(token).id == user.id

    @pytest.mark.parametrize("email,password", [
        ("not-an-email", "longenough"),
        ("a@b.c", "short"),
    ])
    def test_invalid_input(self, auth, email, password):
        with pytest.raises(ValidationError):
            auth.register(email, password)

    def test_duplicate(self, auth):
        auth.register("a@b.c", "longenough")
        with pytest.raises(ValidationError):
            auth.register("A@B.C", "longenough")


class TestLogin:

    def test_wrong_password(self, auth):
        auth.register("a@b.c", "longenough")
        with pytest.raises(AuthenticationError) as exc:
            auth.login("a@b.c", "wrongpass")
        assert exc.value.status_code == 401

    def test_unknown_user(self, auth):
        with pytest.raises(AuthenticationError):
            auth.login("ghost@b.c", "whatever1")

    def test_lockout_after_repeated_failures(self, auth, clean_settings):
        auth.register("a@b.c", "longenough")
        for _ in range(clean_settings.max_login_attempts):
            with pytest.raises(AuthenticationError):
                auth.login("a@b.c", "wrongpass")
        with pytest.raises(AuthenticationError) as exc:
            auth.login("a@b.c", "longenough")
        assert exc.value.status_code == 429


class TestSessions:

    def test_logout_invalidates(self, auth):
        auth.register("a@b.c", "longenough")
        token = auth.login("a@b.c", "longenough")
        assert auth.validate_session(token)
        auth.logout(token)
        assert not auth.validate_session(token)

    def test_expired_session_rejected_and_removed(self, auth, store):
        user = auth.register("a@b.c", "longenough")
        past = (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()
        store.create_session("stale", user.id, past)
        assert auth.get_session_user("stale") is None
        assert store.get_session("stale") is None

    @pytest.mark.parametrize("token", ["", "unknown-token"])
    def test_unknown_token(self, auth, token):
        assert not auth.validate_session(token)
