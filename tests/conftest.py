import asyncio
import inspect
import os
import sys
from pathlib import Path

os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("JWT_SECRET", "test-access-secret-for-testing-only-do-not-use")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-for-testing-only-do-not-use")
os.environ.setdefault("TOKEN_CLEANUP_ENABLED", "false")

import pytest  # noqa: E402
from argon2 import PasswordHasher  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from umiauth.config import Settings  # noqa: E402
from umiauth.service.auth import AuthService  # noqa: E402
from umiauth.service.runtime import reset_runtime_for_tests  # noqa: E402
from umiauth.service.signer import TokenSigner  # noqa: E402
from umiauth.service.tokens import TokenService  # noqa: E402
from umiauth.storage.memory import MemorySessionStore, MemoryUserStore  # noqa: E402
from umiauth.storage.models import Role, User  # noqa: E402

ACCESS_SECRET = "unit-access-secret-0123456789-abcdefghijkl"
REFRESH_SECRET = "unit-refresh-secret-0123456789-abcdefghijkl"
ACCESS_TTL = 15 * 60
REFRESH_TTL = 7 * 24 * 60 * 60


class FakeClock:
    """Settable UNIX clock shared by the signer and the memory store."""

    def __init__(self, start: float = 1_750_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(
        jwt_secret=ACCESS_SECRET,
        jwt_refresh_secret=REFRESH_SECRET,
        access_token_ttl_seconds=ACCESS_TTL,
        refresh_token_ttl_seconds=REFRESH_TTL,
        test_mode=True,
        use_memory_store=True,
    )


@pytest.fixture
def store(clock):
    return MemorySessionStore(clock=clock)


@pytest.fixture
def signer(clock):
    return TokenSigner(clock=clock)


@pytest.fixture
def tokens(store, settings, signer):
    return TokenService(store, settings, signer=signer)


@pytest.fixture
def collector():
    return User.new("collector@example.com", Role.COLLECTOR.value, full_name="Cole Lector")


@pytest.fixture
def admin():
    return User.new("admin@example.com", Role.ADMIN.value, full_name="Ada Min")


@pytest.fixture
def fast_hasher():
    return PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)


@pytest.fixture
def users(collector, admin, fast_hasher):
    user_store = MemoryUserStore()
    user_store.add_user(collector, fast_hasher.hash("CollectorPass123!"))
    user_store.add_user(admin, fast_hasher.hash("AdminPass123!"))
    return user_store


@pytest.fixture
def auth_service(users, tokens, fast_hasher):
    return AuthService(users, tokens, password_hasher=fast_hasher)


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
