"""Tests for the password recovery flow."""

from datetime import timedelta

import pytest

from conftest import extract_reset_token

from accountkernel.service.errors import (
    InvalidCredentialsError,
    InvalidOrExpiredError,
    NotFoundError,
    ValidationError,
)


class TestRequestReset:
    def test_unknown_email_not_found(self, recovery):
        with pytest.raises(NotFoundError):
            recovery.request_reset("ghost@example.com")

    def test_token_set_with_one_hour_expiry(self, recovery, verified_account, memory_store, clock, mailer):
        result = recovery.request_reset("buyer@example.com")

        stored = memory_store.find_by_id(verified_account.id)
        assert result.message == "Password reset link sent to email"
        assert stored.reset_password_expires == clock() + timedelta(hours=1)
        assert mailer.last.subject == "Password Reset Request"
        assert (
            f"http://shop.example.com/reset-password/{stored.reset_password_token}"
            in mailer.last.text
        )

    def test_new_request_replaces_token(self, recovery, verified_account, mailer):
        recovery.request_reset("buyer@example.com")
        first = extract_reset_token(mailer.last)
        recovery.request_reset("buyer@example.com")

        with pytest.raises(InvalidOrExpiredError):
            recovery.reset_password(first, "BatteryStaple7")


class TestResetPassword:
    def test_reset_replaces_password_and_clears_pair(
        self, recovery, sessions, verified_account, memory_store, mailer
    ):
        recovery.request_reset("buyer@example.com")
        token = extract_reset_token(mailer.last)

        result = recovery.reset_password(token, "BatteryStaple7")

        stored = memory_store.find_by_id(verified_account.id)
        assert result.message == "Password reset successful"
        assert stored.reset_password_token is None
        assert stored.reset_password_expires is None
        sessions.login("buyer@example.com", "BatteryStaple7")
        with pytest.raises(InvalidCredentialsError):
            sessions.login("buyer@example.com", "CorrectHorse9!")

    def test_token_is_single_use(self, recovery, verified_account, mailer):
        recovery.request_reset("buyer@example.com")
        token = extract_reset_token(mailer.last)
        recovery.reset_password(token, "BatteryStaple7")

        with pytest.raises(InvalidOrExpiredError):
            recovery.reset_password(token, "AnotherPass8")

    def test_token_rejected_one_second_past_hour(self, recovery, verified_account, mailer, clock):
        recovery.request_reset("buyer@example.com")
        token = extract_reset_token(mailer.last)
        clock.advance(hours=1, seconds=1)

        with pytest.raises(InvalidOrExpiredError):
            recovery.reset_password(token, "BatteryStaple7")

    def test_unknown_token(self, recovery):
        with pytest.raises(InvalidOrExpiredError):
            recovery.reset_password("deadbeef", "BatteryStaple7")

    def test_short_password_rejected(self, recovery, verified_account, mailer):
        recovery.request_reset("buyer@example.com")
        token = extract_reset_token(mailer.last)

        with pytest.raises(ValidationError):
            recovery.reset_password(token, "short")

    def test_reset_does_not_log_in(self, recovery, verified_account, memory_store, mailer):
        before = memory_store.find_by_id(verified_account.id).refresh_tokens
        recovery.request_reset("buyer@example.com")

        recovery.reset_password(extract_reset_token(mailer.last), "BatteryStaple7")

        assert memory_store.find_by_id(verified_account.id).refresh_tokens == before

    def test_reset_revokes_sessions_when_enabled(
        self, recovery, verified_account, memory_store, mailer
    ):
        recovery.settings = recovery.settings.model_copy(
            update={"revoke_sessions_on_password_change": True}
        )
        recovery.request_reset("buyer@example.com")

        recovery.reset_password(extract_reset_token(mailer.last), "BatteryStaple7")

        assert memory_store.find_by_id(verified_account.id).refresh_tokens == frozenset()
