"""Unit tests for the session manager.

Tests for:
- Login credential and verification checks
- Logout idempotence and exact token revocation
- Refresh token rotation
- Password change
"""

import pytest

from accountkernel.service.errors import (
    EmailNotVerifiedError,
    InvalidCredentialsError,
    InvalidOrExpiredError,
    NotFoundError,
    ValidationError,
)


class TestLogin:
    def test_login_issues_pair_and_records_refresh_token(self, sessions, verified_account, memory_store):
        grant = sessions.login("buyer@example.com", "CorrectHorse9!")

        stored = memory_store.find_by_id(verified_account.id)
        assert grant.refresh_token in stored.refresh_tokens
        assert grant.account.id == verified_account.id
        assert grant.account.is_email_verified is True
        assert sessions.codec.decode_access_token(grant.access_token)["sub"] == verified_account.id

    def test_login_is_case_insensitive_on_email(self, sessions, verified_account):
        grant = sessions.login("BUYER@example.com", "CorrectHorse9!")

        assert grant.account.email == "buyer@example.com"

    def test_wrong_password_on_verified_account(self, sessions, verified_account):
        with pytest.raises(InvalidCredentialsError):
            sessions.login("buyer@example.com", "wrong-password")

    def test_unknown_account(self, sessions):
        with pytest.raises(InvalidCredentialsError):
            sessions.login("ghost@example.com", "whatever123")

    def test_unverified_account_with_correct_password(self, sessions, registration):
        registration.register("pending@example.com", "CorrectHorse9!")

        with pytest.raises(EmailNotVerifiedError) as excinfo:
            sessions.login("pending@example.com", "CorrectHorse9!")
        assert excinfo.value.detail == {"is_email_verified": False}

    def test_unverified_account_with_wrong_password(self, sessions, registration):
        """Verification status is only revealed after the password matches."""
        registration.register("pending@example.com", "CorrectHorse9!")

        with pytest.raises(InvalidCredentialsError):
            sessions.login("pending@example.com", "wrong-password")

    def test_each_login_adds_a_refresh_token(self, sessions, verified_account, memory_store):
        before = len(memory_store.find_by_id(verified_account.id).refresh_tokens)
        sessions.login("buyer@example.com", "CorrectHorse9!")
        sessions.login("buyer@example.com", "CorrectHorse9!")

        assert len(memory_store.find_by_id(verified_account.id).refresh_tokens) == before + 2

    def test_missing_fields_rejected(self, sessions):
        with pytest.raises(ValidationError):
            sessions.login("", "password")


class TestLogout:
    def test_logout_removes_exactly_that_token(self, sessions, verified_account, memory_store):
        first = sessions.login("buyer@example.com", "CorrectHorse9!")
        second = sessions.login("buyer@example.com", "CorrectHorse9!")

        result = sessions.logout(first.refresh_token)

        tokens = memory_store.find_by_id(verified_account.id).refresh_tokens
        assert result.revoked is True
        assert result.clear_session is True
        assert first.refresh_token not in tokens
        assert second.refresh_token in tokens

    @pytest.mark.parametrize("token", [None, "", "garbage", "a.b.c"])
    def test_logout_without_valid_token_succeeds(self, sessions, token):
        result = sessions.logout(token)

        assert result.message == "User logged out successfully"
        assert result.clear_session is True
        assert result.revoked is False

    def test_logout_twice_is_idempotent(self, sessions, verified_account):
        grant = sessions.login("buyer@example.com", "CorrectHorse9!")
        sessions.logout(grant.refresh_token)

        result = sessions.logout(grant.refresh_token)

        assert result.revoked is False

    def test_logout_with_expired_token_succeeds(self, sessions, verified_account, clock):
        grant = sessions.login("buyer@example.com", "CorrectHorse9!")
        clock.advance(days=8)

        assert sessions.logout(grant.refresh_token).clear_session is True


class TestRefresh:
    def test_refresh_rotates_token(self, sessions, verified_account, memory_store):
        grant = sessions.login("buyer@example.com", "CorrectHorse9!")

        rotated = sessions.refresh(grant.refresh_token)

        tokens = memory_store.find_by_id(verified_account.id).refresh_tokens
        assert rotated.refresh_token != grant.refresh_token
        assert rotated.refresh_token in tokens
        assert grant.refresh_token not in tokens

    def test_rotated_token_cannot_be_replayed(self, sessions, verified_account):
        grant = sessions.login("buyer@example.com", "CorrectHorse9!")
        sessions.refresh(grant.refresh_token)

        with pytest.raises(InvalidOrExpiredError):
            sessions.refresh(grant.refresh_token)

    def test_revoked_token_cannot_refresh(self, sessions, verified_account):
        grant = sessions.login("buyer@example.com", "CorrectHorse9!")
        sessions.logout(grant.refresh_token)

        with pytest.raises(InvalidOrExpiredError):
            sessions.refresh(grant.refresh_token)

    def test_access_token_cannot_refresh(self, sessions, verified_account):
        grant = sessions.login("buyer@example.com", "CorrectHorse9!")

        with pytest.raises(InvalidOrExpiredError):
            sessions.refresh(grant.access_token)


class TestAuthenticate:
    def test_access_token_resolves_principal(self, sessions, verified_account):
        grant = sessions.login("buyer@example.com", "CorrectHorse9!")

        context = sessions.authenticate(grant.access_token)

        assert context.account_id == verified_account.id
        assert context.role == "customer"

    def test_refresh_token_is_not_a_credential(self, sessions, verified_account):
        grant = sessions.login("buyer@example.com", "CorrectHorse9!")

        with pytest.raises(InvalidCredentialsError):
            sessions.authenticate(grant.refresh_token)


class TestChangePassword:
    def test_change_password_replaces_hash(self, sessions, verified_account):
        result = sessions.change_password(verified_account.id, "CorrectHorse9!", "BatteryStaple7")

        assert result.message == "Password changed successfully."
        sessions.login("buyer@example.com", "BatteryStaple7")
        with pytest.raises(InvalidCredentialsError):
            sessions.login("buyer@example.com", "CorrectHorse9!")

    def test_wrong_current_password(self, sessions, verified_account):
        with pytest.raises(InvalidCredentialsError):
            sessions.change_password(verified_account.id, "nope-nope", "BatteryStaple7")

    def test_missing_account(self, sessions):
        with pytest.raises(NotFoundError):
            sessions.change_password("no-such-id", "CorrectHorse9!", "BatteryStaple7")

    def test_short_new_password(self, sessions, verified_account):
        with pytest.raises(ValidationError):
            sessions.change_password(verified_account.id, "CorrectHorse9!", "short")

    def test_sessions_kept_by_default(self, sessions, verified_account, memory_store):
        grant = sessions.login("buyer@example.com", "CorrectHorse9!")

        sessions.change_password(verified_account.id, "CorrectHorse9!", "BatteryStaple7")

        assert grant.refresh_token in memory_store.find_by_id(verified_account.id).refresh_tokens

    def test_sessions_revoked_when_enabled(self, sessions, verified_account, memory_store):
        sessions.settings = sessions.settings.model_copy(
            update={"revoke_sessions_on_password_change": True}
        )
        sessions.login("buyer@example.com", "CorrectHorse9!")

        sessions.change_password(verified_account.id, "CorrectHorse9!", "BatteryStaple7")

        assert memory_store.find_by_id(verified_account.id).refresh_tokens == frozenset()
