from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable, Optional

from accountkernel.config import Settings, get_settings, reset_settings_cache
from accountkernel.logging import get_logger
from accountkernel.service.email import EmailService, MailDispatcher
from accountkernel.service.kernel import AuthKernel
from accountkernel.service.passwords import PasswordPipeline
from accountkernel.service.recovery import RecoveryFlow
from accountkernel.service.registration import RegistrationFlow
from accountkernel.service.sessions import SessionManager
from accountkernel.service.tokens import TokenCodec
from accountkernel.service.verification import VerificationFlow
from accountkernel.storage.memory import CredentialStore, MemoryStore

logger = get_logger(__name__)


class Runtime:
    """Composition root: owns the store, mailer, codec and every flow."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        store: Optional[CredentialStore] = None,
        mailer: Optional[MailDispatcher] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            persist_store=self.settings.persist_store,
            test_mode=self.settings.test_mode,
        )
        self.store = store or MemoryStore(
            fs_root=self.settings.shared_fs_root if self.settings.persist_store else None
        )
        self.mailer = mailer or EmailService(
            smtp_host=self.settings.smtp_host,
            smtp_port=self.settings.smtp_port,
            smtp_user=self.settings.smtp_user,
            smtp_password=self.settings.smtp_password,
            smtp_use_tls=self.settings.smtp_use_tls,
            from_name=self.settings.email_from_name,
        )
        if isinstance(self.mailer, EmailService) and not self.mailer.is_configured:
            logger.warning(
                "email_dev_mode_enabled",
                message="SMTP_HOST unset; notifications are logged instead of sent",
            )
        self.codec = TokenCodec(self.settings, clock=clock)
        self.passwords = PasswordPipeline()
        self.sessions = SessionManager(self.store, self.codec, self.passwords, self.settings)
        self.verification = VerificationFlow(
            self.store, self.codec, self.mailer, self.sessions, self.settings, clock=clock
        )
        self.recovery = RecoveryFlow(
            self.store,
            self.codec,
            self.mailer,
            self.passwords,
            self.sessions,
            self.settings,
            clock=clock,
        )
        self.registration = RegistrationFlow(
            self.store, self.passwords, self.verification, self.settings
        )
        self.kernel = AuthKernel(
            self.sessions, self.verification, self.recovery, self.registration
        )
        logger.info("runtime_init_completed")


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton (double-checked locking)."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests(**overrides) -> Runtime:
    """Rebuild the runtime singleton from a fresh environment read.

    Keyword arguments are passed to :class:`Runtime` so tests can inject a
    store, mailer or clock.
    """
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime(settings, **overrides)
        return runtime
