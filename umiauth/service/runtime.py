from __future__ import annotations

import asyncio
import threading
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from umiauth.config import Settings, get_settings, reset_settings_cache
from umiauth.logging import get_logger
from umiauth.service.auth import AuthService, UserStore
from umiauth.service.cleanup import TokenCleanupSweeper
from umiauth.service.tokens import TokenService
from umiauth.storage.memory import MemorySessionStore, MemoryUserStore
from umiauth.storage.redis_store import RedisSessionStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password in a connection URL for safe logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:***@{netloc}"
            else:
                netloc = f":***@{netloc}"
            return urlunparse((
                parsed.scheme,
                netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment,
            ))
        return url
    except ValueError:
        return "***url_parse_error***"


class Runtime:
    """Owns the store client, the services and the cleanup sweeper.

    Construct once per process, ``await startup()`` before serving and
    ``await shutdown()`` on exit.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        users: Optional[UserStore] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store: Union[MemorySessionStore, RedisSessionStore]
        if self.settings.use_memory_store:
            self.store = MemorySessionStore()
        else:
            self.store = RedisSessionStore(
                self.settings.redis_url,
                socket_timeout=self.settings.redis_socket_timeout,
            )
        self.users = users if users is not None else MemoryUserStore()
        self.tokens = TokenService(self.store, self.settings)
        self.auth = AuthService(self.users, self.tokens)
        self.sweeper = TokenCleanupSweeper(
            self.tokens, interval=self.settings.token_cleanup_interval_seconds
        )
        self._started = False
        logger.info(
            "runtime_initialized",
            store_type="memory" if self.settings.use_memory_store else "redis",
            redis_url=_mask_url_password(self.settings.redis_url),
            cleanup_enabled=self.settings.token_cleanup_enabled,
        )

    async def startup(self) -> None:
        """Check store connectivity and start the sweeper. Fails closed."""
        if self._started:
            return
        try:
            # Blocking ping; keep it off the event loop
            await asyncio.to_thread(self.store.verify_connection)
        except Exception as exc:
            logger.error(
                "session_store_unavailable",
                redis_url=_mask_url_password(self.settings.redis_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        if self.settings.token_cleanup_enabled:
            await self.sweeper.start()
        self._started = True
        logger.info("runtime_started")

    async def shutdown(self) -> None:
        await self.sweeper.stop()
        await self.store.close()
        self._started = False
        logger.info("runtime_stopped")


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the process-wide Runtime."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Rebuild the Runtime from a fresh environment read (TEST_MODE only)."""
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime(settings)
        return runtime
