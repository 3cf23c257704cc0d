from __future__ import annotations

from typing import Optional

from accountkernel.config import Settings
from accountkernel.logging import get_logger
from accountkernel.service.errors import DuplicateEmailError, ValidationError
from accountkernel.service.outcomes import RegistrationResult
from accountkernel.service.passwords import PasswordPipeline
from accountkernel.service.verification import VerificationFlow
from accountkernel.storage.errors import ConstraintViolation
from accountkernel.storage.memory import CredentialStore
from accountkernel.storage.models import Account

logger = get_logger(__name__)

ROLES = frozenset({"customer", "admin"})


class RegistrationFlow:
    def __init__(
        self,
        store: CredentialStore,
        passwords: PasswordPipeline,
        verification: VerificationFlow,
        settings: Settings,
    ) -> None:
        self.store = store
        self.passwords = passwords
        self.verification = verification
        self.settings = settings

    def register(
        self,
        email: str,
        password: str,
        *,
        name: Optional[str] = None,
        role: str = "customer",
    ) -> RegistrationResult:
        if not email or not email.strip():
            raise ValidationError("Email is required")
        if not password:
            raise ValidationError("Password is required")
        if len(password) < self.settings.min_password_length:
            raise ValidationError(
                f"password must be at least {self.settings.min_password_length} characters"
            )
        if role not in ROLES:
            raise ValidationError("Invalid role")
        if self.store.find_by_email(email) is not None:
            raise DuplicateEmailError("Conflict: Email already exists!")

        account = Account.new(email, name=name, role=role)
        self.passwords.apply(account, password)
        try:
            account = self.store.save(account)
        except ConstraintViolation as exc:
            # Lost a race with a concurrent registration for the same address
            raise DuplicateEmailError("Conflict: Email already exists!") from exc
        logger.info("account_registered", account_id=account.id)

        warnings = self.verification.issue(account)
        return RegistrationResult(
            message=(
                "User created successfully. Please verify your email with the "
                "code sent to your email address."
            ),
            account=account.summary(),
            warnings=warnings,
        )
