"""Background scheduler for periodic catalog price updates."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

from dealspy.price_discovery.orchestrator import BatchReport, PriceUpdateOrchestrator

logger = logging.getLogger(__name__)


class PriceUpdateScheduler:
    """Run ``update_all`` on a fixed interval until stopped."""

    def __init__(
        self,
        orchestrator: PriceUpdateOrchestrator,
        *,
        interval_seconds: float = 4 * 3600,
        shutdown_timeout: float = 60.0,
        run_immediately: bool = True,
    ) -> None:
        self.orchestrator = orchestrator
        self.interval_seconds = interval_seconds
        self.shutdown_timeout = shutdown_timeout
        self.run_immediately = run_immediately
        self._running = False
        self._wakeup = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._last_run_at: datetime | None = None
        self._last_report: BatchReport | None = None
        self._stats: dict[str, int] = {
            "runs_total": 0,
            "runs_failed": 0,
        }

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background scheduler."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._running = True
        self._wakeup.clear()
        self._task = asyncio.create_task(self._run_loop(), name="price-update-scheduler")
        logger.info(f"Price update scheduler started (every {self.interval_seconds:.0f}s)")

    async def stop(self) -> None:
        """Stop gracefully: no new products start, in-flight work gets a grace period."""
        if not self._running:
            return
        self._running = False
        self._wakeup.set()
        self.orchestrator.request_stop()

        if self._task:
            try:
                await asyncio.wait_for(asyncio.shield(self._task), timeout=self.shutdown_timeout)
            except TimeoutError:
                logger.warning("Price update did not finish in time, cancelling")
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            self._task = None
        logger.info("Price update scheduler stopped")

    async def _sleep_until_next_run(self) -> None:
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=self.interval_seconds)
        except TimeoutError:
            pass

    async def run_once(self) -> BatchReport | None:
        """Run one catalog update, recording the outcome."""
        self._stats["runs_total"] += 1
        self._last_run_at = datetime.now(UTC)
        try:
            self._last_report = await self.orchestrator.update_all()
        except Exception as e:
            self._stats["runs_failed"] += 1
            logger.error(f"Scheduled price update failed: {e}", exc_info=True)
            return None
        return self._last_report

    async def _run_loop(self) -> None:
        """Main scheduler loop."""
        if not self.run_immediately:
            await self._sleep_until_next_run()

        while self._running:
            await self.run_once()
            if not self._running:
                break
            await self._sleep_until_next_run()

    def get_status(self) -> dict[str, object]:
        """Get scheduler status and statistics."""
        return {
            "running": self._running,
            "interval_seconds": self.interval_seconds,
            "last_run_at": self._last_run_at.isoformat() if self._last_run_at else None,
            "last_report": self._last_report.summary() if self._last_report else None,
            "stats": dict(self._stats),
        }


__all__ = ["PriceUpdateScheduler"]
