"""
Background task running the proactive token refresh check.

Runs once immediately on start, then every refresh_interval_seconds.
"""

import asyncio
from typing import Optional

from ..schemas.credential_schemas import ProactiveRefreshResult
from ..utils.logger import get_logger
from .token_lifecycle_service import TokenLifecycleManager


class TokenRefreshScheduler:
    """asyncio loop around TokenLifecycleManager.check_and_proactively_refresh()."""

    def __init__(self, token_manager: TokenLifecycleManager, interval_seconds: Optional[float] = None):
        self.token_manager = token_manager
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else token_manager.policy.refresh_interval_seconds
        )
        self.last_result: Optional[ProactiveRefreshResult] = None
        self.runs = 0
        self._task: Optional[asyncio.Task] = None
        self.logger = get_logger()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, force: bool = False) -> ProactiveRefreshResult:
        result = await self.token_manager.check_and_proactively_refresh(force=force)
        self.last_result = result
        self.runs += 1
        self.logger.info(
            "Scheduled token check finished",
            extra={
                "refreshed": result.refreshed,
                "status": result.status.value,
                "skipped_reason": result.skipped_reason,
                "error": result.error,
            },
        )
        return result

    async def _run(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        """Start the loop on the running event loop. No-op when already running."""
        if self.is_running:
            return
        self.logger.info(
            "Starting token refresh scheduler", extra={"interval_seconds": self.interval_seconds}
        )
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None
        self.logger.info("Token refresh scheduler stopped", extra={"runs": self.runs})
