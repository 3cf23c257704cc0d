import asyncio
import inspect
import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Create temp directory for tests before any imports that might initialize runtime
_test_tmp_dir = tempfile.mkdtemp(prefix="accountkernel_test_")
os.environ.setdefault("SHARED_FS_ROOT", _test_tmp_dir)
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("ACCESS_TOKEN_SECRET", "test-access-secret-for-testing-only-do-not-use")
os.environ.setdefault("REFRESH_TOKEN_SECRET", "test-refresh-secret-for-testing-only-do-not-use")
os.environ.setdefault("CLIENT_URL", "http://localhost:3000")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from accountkernel.config import Settings  # noqa: E402
from accountkernel.service.passwords import PasswordPipeline  # noqa: E402
from accountkernel.service.recovery import RecoveryFlow  # noqa: E402
from accountkernel.service.registration import RegistrationFlow  # noqa: E402
from accountkernel.service.runtime import reset_runtime_for_tests  # noqa: E402
from accountkernel.service.sessions import SessionManager  # noqa: E402
from accountkernel.service.tokens import TokenCodec  # noqa: E402
from accountkernel.service.verification import VerificationFlow  # noqa: E402
from accountkernel.storage.memory import MemoryStore  # noqa: E402


class RecordingMailer:
    """Mail double that keeps every message; ``fail`` makes sends report failure."""

    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def send(self, message):
        if self.fail:
            return False
        self.sent.append(message)
        return True

    @property
    def last(self):
        return self.sent[-1]


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        access_token_secret="Unit-Access-Secret_for-Automation-Only-123456789!",
        refresh_token_secret="Unit-Refresh-Secret_for-Automation-Only-987654321!",
        shared_fs_root=str(tmp_path),
        client_url="http://shop.example.com/",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def passwords():
    return PasswordPipeline()


@pytest.fixture
def codec(settings, clock):
    return TokenCodec(settings, clock=clock)


@pytest.fixture
def sessions(memory_store, codec, passwords, settings):
    return SessionManager(memory_store, codec, passwords, settings)


@pytest.fixture
def verification(memory_store, codec, mailer, sessions, settings, clock):
    return VerificationFlow(memory_store, codec, mailer, sessions, settings, clock=clock)


@pytest.fixture
def recovery(memory_store, codec, mailer, passwords, sessions, settings, clock):
    return RecoveryFlow(
        memory_store, codec, mailer, passwords, sessions, settings, clock=clock
    )


@pytest.fixture
def registration(memory_store, passwords, verification, settings):
    return RegistrationFlow(memory_store, passwords, verification, settings)


@pytest.fixture
def verified_account(registration, verification, mailer, memory_store):
    """Register buyer@example.com and confirm it with the mailed code."""
    registration.register("buyer@example.com", "CorrectHorse9!", name="Buyer")
    code = extract_code(mailer.last)
    verification.consume("buyer@example.com", code)
    return memory_store.find_by_email("buyer@example.com")


def extract_code(message):
    return message.text.split("Your verification code is: ", 1)[1].split("\n", 1)[0]


def extract_reset_token(message):
    return message.text.split("/reset-password/", 1)[1].split()[0]


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
