from __future__ import annotations

import copy
import json
import threading
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Protocol

from accountkernel.logging import get_logger
from accountkernel.storage.errors import ConstraintViolation, StoreUnavailable
from accountkernel.storage.models import Account, normalize_email, utcnow


class CredentialStore(Protocol):
    """Contract the account flows expect from the user directory."""

    def find_by_email(self, email: str) -> Optional[Account]: ...

    def find_by_id(self, account_id: str) -> Optional[Account]: ...

    def save(self, account: Account) -> Account: ...

    def find_by_reset_token(self, token: str, now: datetime) -> Optional[Account]: ...


class MemoryStore:
    """In-memory account directory with optional JSON snapshots.

    Reads hand out copies and ``save`` replaces the whole document, so two
    flows racing on one account resolve as last-writer-wins.
    """

    def __init__(self, fs_root: str | None = None) -> None:
        self.logger = get_logger(__name__)
        self.accounts: Dict[str, Account] = {}
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root) if fs_root else None
        if self.fs_root is not None:
            self.fs_root.mkdir(parents=True, exist_ok=True)
            self._load_state()

    def _state_path(self) -> Path:
        assert self.fs_root is not None
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "accounts.json"

    @staticmethod
    def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
        return dt.isoformat() if dt else None

    @staticmethod
    def _deserialize_datetime(raw: Optional[str]) -> Optional[datetime]:
        return datetime.fromisoformat(raw) if raw else None

    def find_by_email(self, email: str) -> Optional[Account]:
        normalized = normalize_email(email)
        with self._data_lock:
            found = next(
                (a for a in self.accounts.values() if a.email == normalized), None
            )
            return copy.deepcopy(found) if found else None

    def find_by_id(self, account_id: str) -> Optional[Account]:
        with self._data_lock:
            found = self.accounts.get(account_id)
            return copy.deepcopy(found) if found else None

    def find_by_reset_token(self, token: str, now: datetime) -> Optional[Account]:
        if not token:
            return None
        with self._data_lock:
            for account in self.accounts.values():
                if (
                    account.reset_password_token == token
                    and account.reset_password_expires is not None
                    and account.reset_password_expires > now
                ):
                    return copy.deepcopy(account)
            return None

    def save(self, account: Account) -> Account:
        stored = replace(
            account,
            email=normalize_email(account.email),
            updated_at=utcnow(),
        )
        with self._data_lock:
            for existing in self.accounts.values():
                if existing.email == stored.email and existing.id != stored.id:
                    raise ConstraintViolation("email already exists", {"field": "email"})
            previous = self.accounts.get(stored.id)
            self.accounts[stored.id] = copy.deepcopy(stored)
            try:
                self._persist_state()
            except StoreUnavailable:
                if previous is None:
                    self.accounts.pop(stored.id, None)
                else:
                    self.accounts[stored.id] = previous
                raise
        return copy.deepcopy(stored)

    def _serialize_account(self, account: Account) -> dict:
        return {
            "id": account.id,
            "email": account.email,
            "name": account.name,
            "role": account.role,
            "password_hash": account.password_hash,
            "password_algo": account.password_algo,
            "is_email_verified": account.is_email_verified,
            "email_verification_token": account.email_verification_token,
            "email_verification_expires": self._serialize_datetime(
                account.email_verification_expires
            ),
            "reset_password_token": account.reset_password_token,
            "reset_password_expires": self._serialize_datetime(
                account.reset_password_expires
            ),
            "refresh_tokens": sorted(account.refresh_tokens),
            "created_at": self._serialize_datetime(account.created_at),
            "updated_at": self._serialize_datetime(account.updated_at),
        }

    def _deserialize_account(self, data: dict) -> Account:
        return Account(
            id=data["id"],
            email=data["email"],
            name=data.get("name"),
            role=data.get("role", "customer"),
            password_hash=data.get("password_hash"),
            password_algo=data.get("password_algo"),
            is_email_verified=bool(data.get("is_email_verified", False)),
            email_verification_token=data.get("email_verification_token"),
            email_verification_expires=self._deserialize_datetime(
                data.get("email_verification_expires")
            ),
            reset_password_token=data.get("reset_password_token"),
            reset_password_expires=self._deserialize_datetime(
                data.get("reset_password_expires")
            ),
            _refresh_tokens=frozenset(data.get("refresh_tokens", [])),
            created_at=self._deserialize_datetime(data.get("created_at")) or utcnow(),
            updated_at=self._deserialize_datetime(data.get("updated_at")) or utcnow(),
        )

    def _persist_state(self) -> None:
        if self.fs_root is None:
            return
        state = {
            "accounts": [self._serialize_account(a) for a in self.accounts.values()],
        }
        path = self._state_path()
        try:
            path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            self.logger.error("account_state_persist_failed", error=str(exc))
            raise StoreUnavailable(f"failed to persist account state: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.accounts = {
            a["id"]: self._deserialize_account(a) for a in data.get("accounts", [])
        }
        self.logger.info("account_state_loaded", accounts=len(self.accounts))
        return True
