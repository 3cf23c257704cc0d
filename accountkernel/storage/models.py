from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Account:
    """Account document as held by the credential store.

    The verification and reset fields are nullable pairs; use the pair helpers
    below so a token is never stored without its expiry (or the reverse).
    ``refresh_tokens`` is a read-only frozenset; the session manager changes it
    through the grant/revoke methods, which swap in a new set.
    """

    id: str
    email: str
    name: Optional[str] = None
    role: str = "customer"
    password_hash: Optional[str] = None
    password_algo: Optional[str] = None
    is_email_verified: bool = False
    email_verification_token: Optional[str] = None
    email_verification_expires: Optional[datetime] = None
    reset_password_token: Optional[str] = None
    reset_password_expires: Optional[datetime] = None
    _refresh_tokens: frozenset[str] = field(default_factory=frozenset)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(
        cls,
        email: str,
        *,
        name: Optional[str] = None,
        role: str = "customer",
    ) -> "Account":
        return cls(id=str(uuid.uuid4()), email=normalize_email(email), name=name, role=role)

    @property
    def refresh_tokens(self) -> frozenset[str]:
        return self._refresh_tokens

    def grant_refresh_token(self, token: str) -> None:
        self._refresh_tokens = self._refresh_tokens | {token}

    def revoke_refresh_token(self, token: str) -> bool:
        if token not in self._refresh_tokens:
            return False
        self._refresh_tokens = self._refresh_tokens - {token}
        return True

    def revoke_all_refresh_tokens(self) -> int:
        revoked = len(self._refresh_tokens)
        self._refresh_tokens = frozenset()
        return revoked

    def set_verification(self, code: str, expires: datetime) -> None:
        self.email_verification_token = code
        self.email_verification_expires = expires

    def clear_verification(self) -> None:
        self.email_verification_token = None
        self.email_verification_expires = None

    def mark_verified(self) -> None:
        self.is_email_verified = True
        self.clear_verification()

    def set_reset(self, token: str, expires: datetime) -> None:
        self.reset_password_token = token
        self.reset_password_expires = expires

    def clear_reset(self) -> None:
        self.reset_password_token = None
        self.reset_password_expires = None

    def summary(self) -> "AccountSummary":
        return AccountSummary(
            id=self.id,
            name=self.name,
            email=self.email,
            role=self.role,
            is_email_verified=self.is_email_verified,
        )


@dataclass(frozen=True)
class AccountSummary:
    """Redacted account view safe to hand back to callers."""

    id: str
    email: str
    role: str
    is_email_verified: bool
    name: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "is_email_verified": self.is_email_verified,
        }


def normalize_email(email: str) -> str:
    return email.strip().lower()
