from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for flow-level failures mapped to HTTP responses.

    Each subclass carries an HTTP ``status_code`` and a stable ``error_code``:
    - validation_error / invalid_or_expired / already_verified / invalid_token (400)
    - invalid_credentials (401)
    - email_not_verified (403)
    - not_found (404)
    - duplicate_email (409)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Missing or malformed input (400)."""
    status_code = 400
    error_code = "validation_error"


class InvalidCredentialsError(ServiceError):
    """Unknown account or wrong password (401)."""
    status_code = 401
    error_code = "invalid_credentials"


class EmailNotVerifiedError(ServiceError):
    """Password matched but the email address is not verified yet (403)."""
    status_code = 403
    error_code = "email_not_verified"


class NotFoundError(ServiceError):
    status_code = 404
    error_code = "not_found"


class DuplicateEmailError(ServiceError):
    status_code = 409
    error_code = "duplicate_email"


class InvalidOrExpiredError(ServiceError):
    """Verification code or reset token is wrong, used, or past its expiry (400)."""
    status_code = 400
    error_code = "invalid_or_expired"


class AlreadyVerifiedError(ServiceError):
    status_code = 400
    error_code = "already_verified"


class InvalidToken(ServiceError):
    """A signed token failed decoding, signature, scope or expiry checks (400)."""
    status_code = 400
    error_code = "invalid_token"


class ServerError(ServiceError):
    """Store or other unexpected failure (500)."""
    status_code = 500
    error_code = "server_error"


ERROR_CODES = frozenset(
    cls.error_code
    for cls in (
        ServiceError,
        ValidationError,
        InvalidCredentialsError,
        EmailNotVerifiedError,
        NotFoundError,
        DuplicateEmailError,
        InvalidOrExpiredError,
        AlreadyVerifiedError,
        InvalidToken,
        ServerError,
    )
)


__all__ = [
    "ServiceError",
    "ValidationError",
    "InvalidCredentialsError",
    "EmailNotVerifiedError",
    "NotFoundError",
    "DuplicateEmailError",
    "InvalidOrExpiredError",
    "AlreadyVerifiedError",
    "InvalidToken",
    "ServerError",
    "ERROR_CODES",
]
