from __future__ import annotations

from typing import Optional, Tuple

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from accountkernel.logging import get_logger
from accountkernel.storage.models import Account

logger = get_logger(__name__)

PASSWORD_ALGO = "argon2id"


class PasswordPipeline:
    """Argon2id hashing shared by registration, password change and reset."""

    def __init__(self, hasher: Optional[PasswordHasher] = None) -> None:
        self._hasher = hasher or PasswordHasher(type=Type.ID)
        # Verified against when the account is missing so both paths cost one argon2 check
        self._dummy_hash = self._hasher.hash("accountkernel-timing-equalizer")

    def hash(self, password: str) -> Tuple[str, str]:
        return self._hasher.hash(password), PASSWORD_ALGO

    def apply(self, account: Account, password: str) -> None:
        """Hash ``password`` and store it on ``account`` (not persisted)."""
        account.password_hash, account.password_algo = self.hash(password)

    def verify(self, account: Optional[Account], password: str) -> bool:
        if account is None or not account.password_hash:
            self._burn(password)
            return False
        if account.password_algo != PASSWORD_ALGO:
            logger.warning(
                "password_algo_mismatch", account_id=account.id, algo=account.password_algo
            )
            self._burn(password)
            return False
        try:
            return self._hasher.verify(account.password_hash, password)
        except VerifyMismatchError:
            return False
        except (InvalidHash, VerificationError):
            logger.warning("password_hash_unreadable", account_id=account.id)
            return False

    def _burn(self, password: str) -> None:
        try:
            self._hasher.verify(self._dummy_hash, password or "")
        except VerificationError:
            pass
