from __future__ import annotations

from typing import Callable, Optional, TypeVar

from accountkernel.logging import get_logger
from accountkernel.service.errors import ServerError, ServiceError
from accountkernel.service.outcomes import (
    AuthContext,
    FlowResult,
    LogoutResult,
    Outcome,
    RegistrationResult,
    SessionGrant,
)
from accountkernel.service.recovery import RecoveryFlow
from accountkernel.service.registration import RegistrationFlow
from accountkernel.service.sessions import SessionManager
from accountkernel.service.verification import VerificationFlow

logger = get_logger(__name__)

T = TypeVar("T")


class AuthKernel:
    """Entry point for the transport layer.

    Every method returns an :class:`Outcome`; flow errors and unexpected
    failures are captured here and never propagate to the caller.
    """

    def __init__(
        self,
        sessions: SessionManager,
        verification: VerificationFlow,
        recovery: RecoveryFlow,
        registration: RegistrationFlow,
    ) -> None:
        self.sessions = sessions
        self.verification = verification
        self.recovery = recovery
        self.registration = registration

    def _guard(self, operation: str, fn: Callable[[], T]) -> Outcome[T]:
        try:
            return Outcome(value=fn())
        except ServiceError as exc:
            log_fn = logger.error if exc.status_code >= 500 else logger.info
            log_fn(
                "auth_operation_failed",
                operation=operation,
                error_code=exc.error_code,
                status_code=exc.status_code,
            )
            return Outcome(error=exc)
        except Exception as exc:
            logger.exception(
                "auth_operation_crashed",
                operation=operation,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return Outcome(error=ServerError("unexpected failure"))

    def register(
        self,
        email: str,
        password: str,
        *,
        name: Optional[str] = None,
        role: str = "customer",
    ) -> Outcome[RegistrationResult]:
        return self._guard(
            "register",
            lambda: self.registration.register(email, password, name=name, role=role),
        )

    def login(self, email: str, password: str) -> Outcome[SessionGrant]:
        return self._guard("login", lambda: self.sessions.login(email, password))

    def logout(self, refresh_token: Optional[str]) -> Outcome[LogoutResult]:
        return self._guard("logout", lambda: self.sessions.logout(refresh_token))

    def refresh(self, refresh_token: Optional[str]) -> Outcome[SessionGrant]:
        return self._guard("refresh", lambda: self.sessions.refresh(refresh_token))

    def authenticate(self, access_token: Optional[str]) -> Outcome[AuthContext]:
        return self._guard("authenticate", lambda: self.sessions.authenticate(access_token))

    def change_password(
        self, account_id: str, old_password: str, new_password: str
    ) -> Outcome[FlowResult]:
        return self._guard(
            "change_password",
            lambda: self.sessions.change_password(account_id, old_password, new_password),
        )

    def verify_email(self, email: str, code: str) -> Outcome[SessionGrant]:
        return self._guard("verify_email", lambda: self.verification.consume(email, code))

    def resend_verification(self, email: str) -> Outcome[FlowResult]:
        return self._guard("resend_verification", lambda: self.verification.resend(email))

    def request_password_reset(self, email: str) -> Outcome[FlowResult]:
        return self._guard("request_password_reset", lambda: self.recovery.request_reset(email))

    def reset_password(self, token: str, new_password: str) -> Outcome[FlowResult]:
        return self._guard(
            "reset_password", lambda: self.recovery.reset_password(token, new_password)
        )
