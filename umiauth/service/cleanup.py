"""Background sweeper for the per-user session index.

The store expires refresh records and family pointers on its own, but the
``user_sessions:<user>`` sets have no TTL and keep the ids of families
that silently expired. The sweeper removes those dangling ids once at
start and then on a fixed interval.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Optional

from umiauth.logging import correlation_scope, get_logger

if TYPE_CHECKING:
    from umiauth.service.tokens import TokenService

logger = get_logger(__name__)

DEFAULT_INTERVAL_SECONDS = 60 * 60
MAX_BACKOFF_SECONDS = 300


class TokenCleanupSweeper:
    """Runs ``TokenService.cleanup_expired_families`` on a schedule."""

    def __init__(
        self,
        tokens: "TokenService",
        *,
        interval: int = DEFAULT_INTERVAL_SECONDS,
    ) -> None:
        self.tokens = tokens
        self.interval = interval
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.runs = 0
        self.last_removed = 0

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the sweep loop; the first sweep happens immediately."""
        if self._running:
            logger.warning("token_cleanup_already_running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("token_cleanup_started", interval=self.interval)

    async def stop(self) -> None:
        """Cancel the sweep loop and wait for it to finish."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("token_cleanup_stopped")

    async def run_once(self) -> int:
        with correlation_scope("sweep"):
            removed = await self.tokens.cleanup_expired_families()
        self.runs += 1
        self.last_removed = removed
        return removed

    async def _run_loop(self) -> None:
        consecutive_errors = 0
        while self._running:
            try:
                await self.run_once()
                consecutive_errors = 0
            except Exception as exc:
                consecutive_errors += 1
                logger.error(
                    "token_cleanup_failed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                    consecutive_errors=consecutive_errors,
                )
                # Retry sooner than the full interval while the store is flapping
                if consecutive_errors <= 3:
                    await asyncio.sleep(min(self.interval, MAX_BACKOFF_SECONDS))
                    continue

            await asyncio.sleep(self.interval)
