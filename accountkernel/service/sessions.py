from __future__ import annotations

from typing import Optional

from accountkernel.config import Settings
from accountkernel.logging import get_logger
from accountkernel.service.errors import (
    EmailNotVerifiedError,
    InvalidCredentialsError,
    InvalidOrExpiredError,
    InvalidToken,
    NotFoundError,
    ValidationError,
)
from accountkernel.service.outcomes import AuthContext, FlowResult, LogoutResult, SessionGrant
from accountkernel.service.passwords import PasswordPipeline
from accountkernel.service.tokens import TokenCodec
from accountkernel.storage.memory import CredentialStore
from accountkernel.storage.models import Account

logger = get_logger(__name__)


class SessionManager:
    """Issues, rotates and revokes access/refresh token pairs.

    This is the only component that changes an account's refresh token set.
    """

    def __init__(
        self,
        store: CredentialStore,
        codec: TokenCodec,
        passwords: PasswordPipeline,
        settings: Settings,
    ) -> None:
        self.store = store
        self.codec = codec
        self.passwords = passwords
        self.settings = settings

    def revoke_all(self, account: Account) -> int:
        """Drop every refresh token on ``account`` (caller persists)."""
        return account.revoke_all_refresh_tokens()

    def establish_session(self, account: Account, *, message: str = "Login successful") -> SessionGrant:
        """Mint a token pair for an already-authenticated account and persist it."""
        access_token = self.codec.generate_access_token(account)
        refresh_token = self.codec.generate_refresh_token(account)
        account.grant_refresh_token(refresh_token)
        saved = self.store.save(account)
        logger.info(
            "session_established",
            account_id=saved.id,
            active_refresh_tokens=len(saved.refresh_tokens),
        )
        return SessionGrant(
            access_token=access_token,
            refresh_token=refresh_token,
            account=saved.summary(),
            message=message,
        )

    def login(self, email: str, password: str) -> SessionGrant:
        if not email or not password:
            raise ValidationError("email and password are required")
        account = self.store.find_by_email(email)
        if not self.passwords.verify(account, password) or account is None:
            logger.info("login_rejected", reason="invalid_credentials")
            raise InvalidCredentialsError("Invalid credentials")
        if not account.is_email_verified:
            logger.info("login_rejected", reason="email_not_verified", account_id=account.id)
            raise EmailNotVerifiedError(
                "Email not verified. Please verify your email first.",
                detail={"is_email_verified": False},
            )
        grant = self.establish_session(account)
        logger.info("login_succeeded", account_id=account.id)
        return grant

    def logout(self, refresh_token: Optional[str]) -> LogoutResult:
        if not refresh_token:
            return LogoutResult()
        try:
            payload = self.codec.decode_refresh_token(refresh_token)
        except InvalidToken as exc:
            logger.info("logout_token_ignored", reason=exc.message)
            return LogoutResult()
        account = self.store.find_by_id(payload["sub"])
        if account is None or not account.revoke_refresh_token(refresh_token):
            return LogoutResult()
        self.store.save(account)
        logger.info("logout_revoked", account_id=account.id)
        return LogoutResult(revoked=True)

    def refresh(self, refresh_token: Optional[str]) -> SessionGrant:
        """Exchange a live refresh token for a new pair, revoking the old one."""
        try:
            payload = self.codec.decode_refresh_token(refresh_token or "")
        except InvalidToken as exc:
            raise InvalidOrExpiredError("Invalid or expired refresh token") from exc
        account = self.store.find_by_id(payload["sub"])
        if account is None or not account.revoke_refresh_token(refresh_token or ""):
            logger.warning("refresh_token_not_active", account_id=payload.get("sub"))
            raise InvalidOrExpiredError("Invalid or expired refresh token")
        grant = self.establish_session(account, message="Session refreshed")
        logger.info("session_rotated", account_id=account.id)
        return grant

    def authenticate(self, access_token: Optional[str]) -> AuthContext:
        try:
            payload = self.codec.decode_access_token(access_token or "")
        except InvalidToken as exc:
            raise InvalidCredentialsError("Authentication required") from exc
        return AuthContext(account_id=payload["sub"], role=payload.get("role", "customer"))

    def change_password(
        self, account_id: str, old_password: str, new_password: str
    ) -> FlowResult:
        if not old_password or not new_password:
            raise ValidationError("oldPassword and newPassword are required")
        if len(new_password) < self.settings.min_password_length:
            raise ValidationError(
                f"password must be at least {self.settings.min_password_length} characters"
            )
        account = self.store.find_by_id(account_id)
        if account is None:
            raise NotFoundError("User not found")
        if not self.passwords.verify(account, old_password):
            logger.info("password_change_rejected", account_id=account_id)
            raise InvalidCredentialsError("Current password is incorrect.")
        self.passwords.apply(account, new_password)
        revoked = 0
        if self.settings.revoke_sessions_on_password_change:
            revoked = self.revoke_all(account)
        self.store.save(account)
        logger.info("password_changed", account_id=account_id, revoked_sessions=revoked)
        return FlowResult(message="Password changed successfully.", account=account.summary())
