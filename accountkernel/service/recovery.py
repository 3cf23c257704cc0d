from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Optional

from accountkernel.config import Settings
from accountkernel.logging import get_logger
from accountkernel.service.email import (
    MailDispatcher,
    dispatch_notification,
    password_reset_email,
)
from accountkernel.service.errors import InvalidOrExpiredError, NotFoundError, ValidationError
from accountkernel.service.outcomes import FlowResult
from accountkernel.service.passwords import PasswordPipeline
from accountkernel.service.sessions import SessionManager
from accountkernel.service.tokens import TokenCodec
from accountkernel.storage.memory import CredentialStore
from accountkernel.storage.models import utcnow

logger = get_logger(__name__)


class RecoveryFlow:
    """Password reset by emailed single-use link."""

    def __init__(
        self,
        store: CredentialStore,
        codec: TokenCodec,
        mailer: MailDispatcher,
        passwords: PasswordPipeline,
        sessions: SessionManager,
        settings: Settings,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.codec = codec
        self.mailer = mailer
        self.passwords = passwords
        self.sessions = sessions
        self.settings = settings
        self._clock = clock or utcnow

    def reset_url(self, token: str) -> str:
        return f"{self.settings.client_url}/reset-password/{token}"

    def request_reset(self, email: str) -> FlowResult:
        if not email:
            raise ValidationError("Email is required")
        account = self.store.find_by_email(email)
        if account is None:
            raise NotFoundError("User not found")
        token = self.codec.generate_reset_token()
        expires = self._clock() + timedelta(minutes=self.settings.reset_token_ttl_minutes)
        account.set_reset(token, expires)
        self.store.save(account)
        logger.info("password_reset_requested", account_id=account.id)
        message = password_reset_email(
            app_name=self.settings.app_name,
            sender=self.settings.email_from_address,
            to=account.email,
            reset_url=self.reset_url(token),
            ttl_minutes=self.settings.reset_token_ttl_minutes,
        )
        warnings = dispatch_notification(
            self.mailer, message, purpose="password_reset", account_id=account.id
        )
        return FlowResult(message="Password reset link sent to email", warnings=warnings)

    def reset_password(self, token: str, new_password: str) -> FlowResult:
        if not new_password:
            raise ValidationError("password is required")
        if len(new_password) < self.settings.min_password_length:
            raise ValidationError(
                f"password must be at least {self.settings.min_password_length} characters"
            )
        account = self.store.find_by_reset_token(token, self._clock()) if token else None
        if account is None:
            logger.info("password_reset_rejected")
            raise InvalidOrExpiredError("Invalid or expired token")
        self.passwords.apply(account, new_password)
        account.clear_reset()
        revoked = 0
        if self.settings.revoke_sessions_on_password_change:
            revoked = self.sessions.revoke_all(account)
        self.store.save(account)
        logger.info("password_reset_completed", account_id=account.id, revoked_sessions=revoked)
        return FlowResult(message="Password reset successful")
