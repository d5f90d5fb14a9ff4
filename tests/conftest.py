import asyncio
import inspect
import os
import sys
from pathlib import Path

# Set before any imports that might build the runtime
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("OTP_HASH_TIME_COST", "1")
os.environ.setdefault("OTP_HASH_MEMORY_COST", "8")
os.environ.setdefault("OTP_HASH_PARALLELISM", "1")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from authtokens.config import Settings  # noqa: E402
from authtokens.service.access_token import AccessTokenIssuer  # noqa: E402
from authtokens.service.hashing import Argon2Hasher  # noqa: E402
from authtokens.service.otp import OTPManager  # noqa: E402
from authtokens.service.password_reset import PasswordResetManager  # noqa: E402
from authtokens.service.refresh_token import RefreshTokenManager  # noqa: E402
from authtokens.service.runtime import clear_runtime  # noqa: E402
from authtokens.storage.memory import MemoryStore  # noqa: E402

JWT_SECRET = "Test-Secret-Key_for-Automation-Only-987654321!"


class FakeClock:
    """Manually advanced clock shared by the store and the token issuer."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_runtime_state():
    clear_runtime()
    yield
    clear_runtime()


@pytest.fixture
def settings():
    """Create test settings."""
    return Settings(
        use_memory_store=True,
        jwt_secret=JWT_SECRET,
        otp_hash_time_cost=1,
        otp_hash_memory_cost=8,
        otp_hash_parallelism=1,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store(clock):
    """Create memory store driven by the fake clock."""
    return MemoryStore(clock=clock)


@pytest.fixture
def hasher():
    # Minimal argon2 parameters keep the suite fast
    return Argon2Hasher(time_cost=1, memory_cost=8, parallelism=1)


@pytest.fixture
def refresh_manager(memory_store):
    return RefreshTokenManager(memory_store, ttl="1h")


@pytest.fixture
def reset_manager(memory_store):
    return PasswordResetManager(memory_store, ttl="10m")


@pytest.fixture
def otp_manager(memory_store, hasher):
    return OTPManager(memory_store, ttl="10m", hasher=hasher)


@pytest.fixture
def issuer(clock):
    return AccessTokenIssuer(
        secret=JWT_SECRET,
        issuer="authtokens",
        expiry="15m",
        clock=clock,
    )


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
