"""Tests for the typed-outcome boundary and the end-to-end account lifecycle."""

from datetime import timedelta

import pytest

from conftest import extract_code, extract_reset_token

from accountkernel.service.errors import DuplicateEmailError
from accountkernel.service.kernel import AuthKernel
from accountkernel.storage.errors import StoreUnavailable


@pytest.fixture
def kernel(sessions, verification, recovery, registration):
    return AuthKernel(sessions, verification, recovery, registration)


class TestOutcomeGuard:
    def test_success_carries_value(self, kernel):
        outcome = kernel.register("a@b.com", "LongEnough1")

        assert outcome.ok
        assert outcome.status_code == 200
        assert outcome.value.account.email == "a@b.com"

    def test_flow_error_is_captured(self, kernel):
        kernel.register("a@b.com", "LongEnough1")

        outcome = kernel.register("A@B.com", "LongEnough1")

        assert not outcome.ok
        assert outcome.status_code == 409
        assert outcome.error.error_code == "duplicate_email"
        with pytest.raises(DuplicateEmailError):
            outcome.unwrap()

    def test_store_failure_becomes_server_error(self, kernel, memory_store, monkeypatch):
        def failing_save(account):
            raise StoreUnavailable("disk gone")

        monkeypatch.setattr(memory_store, "save", failing_save)

        outcome = kernel.register("a@b.com", "LongEnough1")

        assert outcome.status_code == 500
        assert outcome.error.error_code == "server_error"

    def test_logout_never_fails(self, kernel):
        outcome = kernel.logout("not-a-token")

        assert outcome.ok
        assert outcome.value.clear_session is True

    def test_warnings_exposed_on_outcome(self, kernel, mailer):
        mailer.fail = True

        outcome = kernel.register("a@b.com", "LongEnough1")

        assert outcome.ok
        assert outcome.warnings == ["notification_failed"]


class TestLifecycle:
    def test_register_verify_logout(self, kernel, mailer, memory_store, clock):
        """Register, verify within 24h, then logout empties the token set."""
        kernel.register("a@b.com", "LongEnough1").unwrap()
        code = extract_code(mailer.last)
        assert len(code) == 4 and code.isdigit()

        clock.advance(hours=23)
        grant = kernel.verify_email("a@b.com", code).unwrap()

        assert grant.access_token
        assert memory_store.find_by_email("a@b.com").refresh_tokens == frozenset(
            {grant.refresh_token}
        )

        kernel.logout(grant.refresh_token).unwrap()

        assert memory_store.find_by_email("a@b.com").refresh_tokens == frozenset()

    def test_reset_request_then_late_reset(self, kernel, mailer, memory_store, clock):
        """Unknown email is NotFound; a reset token used 1h+1s later is expired."""
        assert kernel.request_password_reset("ghost@b.com").status_code == 404

        kernel.register("a@b.com", "LongEnough1").unwrap()
        kernel.request_password_reset("a@b.com").unwrap()
        token = extract_reset_token(mailer.last)
        stored = memory_store.find_by_email("a@b.com")
        assert stored.reset_password_expires == clock() + timedelta(hours=1)

        clock.advance(hours=1, seconds=1)
        outcome = kernel.reset_password(token, "BatteryStaple7")

        assert outcome.status_code == 400
        assert outcome.error.error_code == "invalid_or_expired"

    def test_change_password_through_access_token(self, kernel, mailer):
        kernel.register("a@b.com", "LongEnough1").unwrap()
        grant = kernel.verify_email("a@b.com", extract_code(mailer.last)).unwrap()

        principal = kernel.authenticate(grant.access_token).unwrap()
        kernel.change_password(principal.account_id, "LongEnough1", "BatteryStaple7").unwrap()

        assert kernel.login("a@b.com", "BatteryStaple7").ok
        assert kernel.login("a@b.com", "LongEnough1").status_code == 401
