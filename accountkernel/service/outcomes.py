from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, List, Optional, TypeVar

from accountkernel.service.errors import ServiceError
from accountkernel.storage.models import AccountSummary


@dataclass
class SessionGrant:
    access_token: str
    refresh_token: str
    account: AccountSummary
    message: str = "Login successful"
    warnings: List[str] = field(default_factory=list)


@dataclass
class FlowResult:
    message: str
    account: Optional[AccountSummary] = None
    warnings: List[str] = field(default_factory=list)


@dataclass
class RegistrationResult(FlowResult):
    pass


@dataclass
class LogoutResult:
    message: str = "User logged out successfully"
    # Logout always tells the transport to drop both token cookies
    clear_session: bool = True
    revoked: bool = False


@dataclass
class AuthContext:
    account_id: str
    role: str


T = TypeVar("T")


@dataclass
class Outcome(Generic[T]):
    """Success value or typed error returned across the kernel boundary."""

    value: Optional[T] = None
    error: Optional[ServiceError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def status_code(self) -> int:
        return self.error.status_code if self.error else 200

    @property
    def warnings(self) -> List[str]:
        found: Any = getattr(self.value, "warnings", None)
        return list(found) if found else []

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
