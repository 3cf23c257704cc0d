from __future__ import annotations

import hmac
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from accountkernel.config import Settings
from accountkernel.logging import get_logger
from accountkernel.service.email import (
    MailDispatcher,
    dispatch_notification,
    verification_code_email,
)
from accountkernel.service.errors import (
    AlreadyVerifiedError,
    InvalidOrExpiredError,
    NotFoundError,
    ValidationError,
)
from accountkernel.service.outcomes import FlowResult, SessionGrant
from accountkernel.service.sessions import SessionManager
from accountkernel.service.tokens import TokenCodec
from accountkernel.storage.memory import CredentialStore
from accountkernel.storage.models import Account, utcnow

logger = get_logger(__name__)


class VerificationFlow:
    """Four-digit email ownership codes: issue, resend, consume."""

    def __init__(
        self,
        store: CredentialStore,
        codec: TokenCodec,
        mailer: MailDispatcher,
        sessions: SessionManager,
        settings: Settings,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.codec = codec
        self.mailer = mailer
        self.sessions = sessions
        self.settings = settings
        self._clock = clock or utcnow

    def issue(self, account: Account) -> List[str]:
        """Replace the account's code with a different one, persist it, and mail it out.

        Returns notification warnings; the new code is live even when the
        mail could not be sent.
        """
        previous = account.email_verification_token
        code = self.codec.generate_verification_code()
        while code == previous:
            code = self.codec.generate_verification_code()
        expires = self._clock() + timedelta(hours=self.settings.verification_code_ttl_hours)
        account.set_verification(code, expires)
        self.store.save(account)
        logger.info("verification_code_issued", account_id=account.id)
        message = verification_code_email(
            app_name=self.settings.app_name,
            sender=self.settings.email_from_address,
            to=account.email,
            code=code,
            ttl_hours=self.settings.verification_code_ttl_hours,
        )
        return dispatch_notification(
            self.mailer, message, purpose="email_verification", account_id=account.id
        )

    def resend(self, email: str) -> FlowResult:
        if not email:
            raise ValidationError("Email is required")
        account = self.store.find_by_email(email)
        if account is None:
            raise NotFoundError("User not found")
        if account.is_email_verified:
            raise AlreadyVerifiedError("Email is already verified.")
        warnings = self.issue(account)
        return FlowResult(
            message="Verification code resent. Please check your email.",
            warnings=warnings,
        )

    def consume(self, email: str, code: str) -> SessionGrant:
        if not email or not code:
            raise ValidationError("email and code are required")
        account = self.store.find_by_email(email)
        if account is None:
            raise NotFoundError("User not found")
        stored = account.email_verification_token
        expires = account.email_verification_expires
        if (
            stored is None
            or expires is None
            or not hmac.compare_digest(stored.encode(), str(code).encode())
            or not self._clock() < expires
        ):
            logger.info("verification_code_rejected", account_id=account.id)
            raise InvalidOrExpiredError("Invalid or expired verification code.")
        account.mark_verified()
        logger.info("email_verified", account_id=account.id)
        return self.sessions.establish_session(
            account, message="Email verified and user logged in successfully!"
        )
