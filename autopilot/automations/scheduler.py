"""
Periodic automation processing.

Runs the batch processor on a fixed interval inside the API process and
posts a system notification when a tick fails.

Usage:
    scheduler = AutomationScheduler(processor, interval_seconds=300)
    await scheduler.start()
    ...
    await scheduler.stop()
"""
import asyncio
import logging
from datetime import datetime
from typing import Optional

from .inbox import NotificationInbox, NotificationKind
from .processor import AutomationProcessor, BatchSummary

logger = logging.getLogger(__name__)


class AutomationScheduler:
    """Invokes batch processing every ``interval_seconds``."""

    def __init__(
        self,
        processor: AutomationProcessor,
        interval_seconds: float = 300,
        tick_timeout_seconds: Optional[float] = None,
        inbox: Optional[NotificationInbox] = None,
        alert_user_id: Optional[str] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            processor: Batch processor to invoke
            interval_seconds: Pause between ticks
            tick_timeout_seconds: Upper bound for one tick (defaults to the interval)
            inbox: Where failed ticks are reported
            alert_user_id: Recipient of failure notifications
        """
        self.processor = processor
        self.interval_seconds = interval_seconds
        self.tick_timeout_seconds = tick_timeout_seconds or interval_seconds
        self.inbox = inbox
        self.alert_user_id = alert_user_id
        self.last_summary: Optional[BatchSummary] = None
        self.last_tick_at: Optional[datetime] = None
        self._scheduler_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._scheduler_task is not None and not self._scheduler_task.done()

    async def start(self) -> None:
        """
        Start the periodic loop.

        This should be called once at application startup.
        """
        if self._scheduler_task:
            return

        self._scheduler_task = asyncio.create_task(self._scheduler_loop())
        logger.info(f"Automation scheduler started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        """
        Stop the periodic loop.

        This should be called at application shutdown.
        """
        if self._scheduler_task:
            self._scheduler_task.cancel()
            try:
                await self._scheduler_task
            except asyncio.CancelledError:
                pass
            self._scheduler_task = None

        logger.info("Automation scheduler stopped")

    async def run_once(self) -> Optional[BatchSummary]:
        """Run one processing tick. Returns None if the tick failed."""
        self.last_tick_at = datetime.now()
        try:
            summary = await asyncio.wait_for(
                self.processor.process(),
                timeout=self.tick_timeout_seconds,
            )
        except asyncio.TimeoutError:
            await self._report_failure(f"Processing tick exceeded {self.tick_timeout_seconds:g}s")
            return None
        except Exception as e:
            logger.exception("Processing tick failed")
            await self._report_failure(str(e))
            return None

        self.last_summary = summary
        return summary

    async def _report_failure(self, message: str) -> None:
        logger.error(f"Automation scheduler tick failed: {message}")
        if self.inbox is not None and self.alert_user_id:
            await self.inbox.notify(
                self.alert_user_id,
                "Automation processing failed",
                message,
                kind=NotificationKind.SYSTEM,
            )

    async def _scheduler_loop(self) -> None:
        """Main loop; one tick per interval."""
        try:
            while True:
                await self.run_once()
                await asyncio.sleep(self.interval_seconds)
        except asyncio.CancelledError:
            logger.info("Automation scheduler loop cancelled")
            raise
