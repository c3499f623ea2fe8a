"""Periodic expiration of elapsed violations.

Runs once when started and then on a fixed interval. Each due violation is
expired in isolation, so one failing backend call never stops the rest of
the sweep. The restriction snapshot is saved once per sweep that expired
anything.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

from wardcord.util.logger import get_logger
from wardcord.violations.enforcement import MessageRateLimiter
from wardcord.violations.warning_system import WarningSystem

logger = get_logger("expiration_sweeper")


class ExpirationSweeper:
    """
    Background task expiring violations whose ``expires_at`` has passed.

    Args:
        warning_system: Owner of the violation cache and expiry logic.
        get_interval: Callable returning the interval in seconds (called at start).
        rate_limiter: Optional limiter whose stale buckets are pruned each sweep.
    """

    def __init__(
        self,
        warning_system: WarningSystem,
        get_interval: Callable[[], float],
        rate_limiter: Optional[MessageRateLimiter] = None,
    ) -> None:
        self._warning_system = warning_system
        self._get_interval = get_interval
        self._rate_limiter = rate_limiter
        self._task: asyncio.Task | None = None

    async def sweep(self) -> int:
        """Expire every due cached violation. Returns how many were expired."""
        now = self._warning_system.clock()
        due = [v for v in self._warning_system.iter_cached_violations() if v.is_due_for_expiry(now)]
        expired = 0

        for violation in due:
            try:
                if await self._warning_system.expire_violation(
                    violation.user_id, violation.guild_id, violation.id, save=False
                ):
                    expired += 1
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("[EXPIRATION SWEEPER] Failed to expire violation #%s: %s", violation.id, exc)

        if expired:
            await self._warning_system.save_snapshot()
            logger.info("[EXPIRATION SWEEPER] Expired %d of %d due violations", expired, len(due))
        if self._rate_limiter is not None:
            self._rate_limiter.prune()
        return expired

    async def _run_loop(self, interval: float) -> None:
        """Infinite loop: sweep, sleep, repeat."""
        logger.info("[EXPIRATION SWEEPER] Starting periodic sweep (interval=%.1fs)", interval)
        try:
            while True:
                try:
                    await self.sweep()
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    logger.error("[EXPIRATION SWEEPER] Unexpected error during sweep: %s", exc)
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("[EXPIRATION SWEEPER] Periodic sweep cancelled")
            raise

    def start(self) -> None:
        """Start the background sweep task if not already running."""
        if self._task and not self._task.done():
            logger.warning("[EXPIRATION SWEEPER] Sweep task already running")
            return
        interval = self._get_interval()
        self._task = asyncio.create_task(self._run_loop(interval))

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def shutdown(self) -> None:
        """Stop the task and wait for it to finish."""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("[EXPIRATION SWEEPER] Sweeper shutdown complete")
