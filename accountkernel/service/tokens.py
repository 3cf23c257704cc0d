"""Token minting and validation.

Access and refresh tokens are compact HS256 JWTs signed with separate secrets,
so a refresh token can never pass as an access token (or the reverse) even if
the ``token_type`` claim were forged. Reset tokens are opaque random hex and
carry no identity; the store resolves them.

Verification codes are four decimal digits drawn uniformly from 1000-9999.
That is roughly 13 bits of entropy, which is accepted deliberately: the code
has to be typed by a person, it is single-use, it expires after 24 hours, and
it is only checked against the one account named by the caller's email.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from accountkernel.config import Settings
from accountkernel.logging import get_logger
from accountkernel.service.errors import InvalidToken
from accountkernel.storage.models import Account, utcnow

logger = get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"

VERIFICATION_CODE_MIN = 1000
VERIFICATION_CODE_MAX = 9999
RESET_TOKEN_BYTES = 32


class TokenCodec:
    def __init__(
        self,
        settings: Settings,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.settings = settings
        self._clock = clock or utcnow
        self._secrets = {
            ACCESS: settings.access_token_secret.encode(),
            REFRESH: settings.refresh_token_secret.encode(),
        }
        self._ttls = {
            ACCESS: timedelta(minutes=settings.access_token_ttl_minutes),
            REFRESH: timedelta(days=settings.refresh_token_ttl_days),
        }

    def generate_access_token(self, account: Account) -> str:
        return self._issue(account, ACCESS)

    def generate_refresh_token(self, account: Account) -> str:
        return self._issue(account, REFRESH)

    def decode_access_token(self, token: str) -> dict[str, Any]:
        return self._decode(token, ACCESS)

    def decode_refresh_token(self, token: str) -> dict[str, Any]:
        return self._decode(token, REFRESH)

    @staticmethod
    def generate_reset_token() -> str:
        return secrets.token_hex(RESET_TOKEN_BYTES)

    @staticmethod
    def generate_verification_code() -> str:
        span = VERIFICATION_CODE_MAX - VERIFICATION_CODE_MIN + 1
        return str(VERIFICATION_CODE_MIN + secrets.randbelow(span))

    def _issue(self, account: Account, token_type: str) -> str:
        now = self._clock()
        payload = {
            "iss": self.settings.jwt_issuer,
            "aud": self.settings.jwt_audience,
            "sub": account.id,
            "role": account.role,
            "token_type": token_type,
            "jti": str(uuid.uuid4()),
            "iat": int(now.timestamp()),
            "exp": int((now + self._ttls[token_type]).timestamp()),
        }
        return self._encode_jwt(payload, self._secrets[token_type])

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str, secret: bytes) -> str:
        return self._encode_segment(
            hmac.new(secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def _encode_jwt(self, payload: dict[str, Any], secret: bytes) -> str:
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input, secret)}"

    def _decode(self, token: str, token_type: str) -> dict[str, Any]:
        if not token or not isinstance(token, str):
            raise InvalidToken("token missing")
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            raise InvalidToken("token malformed") from None

        # Reject anything but HS256 to rule out algorithm confusion
        try:
            header = json.loads(self._decode_segment(header_b64))
        except (ValueError, UnicodeDecodeError):
            raise InvalidToken("token header unreadable") from None
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning("jwt_invalid_algorithm", token_type=token_type)
            raise InvalidToken("unsupported token algorithm")

        expected_sig = self._sign(f"{header_b64}.{payload_b64}", self._secrets[token_type])
        if not hmac.compare_digest(expected_sig, sig_b64):
            raise InvalidToken("token signature mismatch")

        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (ValueError, UnicodeDecodeError):
            raise InvalidToken("token payload unreadable") from None
        if not isinstance(payload, dict):
            raise InvalidToken("token payload unreadable")
        if payload.get("token_type") != token_type:
            raise InvalidToken("token scope mismatch")
        if payload.get("iss") != self.settings.jwt_issuer:
            raise InvalidToken("token issuer mismatch")
        if payload.get("aud") != self.settings.jwt_audience:
            raise InvalidToken("token audience mismatch")
        if not payload.get("sub"):
            raise InvalidToken("token subject missing")
        try:
            exp_ts = float(payload["exp"])
        except (KeyError, TypeError, ValueError):
            raise InvalidToken("token expiry missing") from None
        if exp_ts <= self._clock().timestamp():
            raise InvalidToken("token expired")
        return payload
