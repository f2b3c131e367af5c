"""
Batch processing of automations.

Loads the automations to process, takes a lease on each, runs it through
the orchestrator and collects a summary. A failure in one automation never
affects the others. Processing is sequential unless a concurrency above
one is configured.

Usage:
    processor = AutomationProcessor(store, recorder, orchestrator)
    summary = await processor.process()
    print(summary.triggered, "of", summary.processed, "automations fired")

    # Manual "run now" for a single automation
    summary = await processor.process(automation_id="...")
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional
from uuid import uuid4

from .models import RunStatus, to_utc, utc_now
from .orchestrator import RunOrchestrator, RunOutcome
from .recorder import RunRecorder
from .store import AutomationNotFoundError, AutomationStore

logger = logging.getLogger(__name__)

LEASE_HELD_REASON = "Another invocation is processing this automation"


@dataclass
class BatchSummary:
    """Result of one processing invocation."""
    processed: int = 0
    triggered: int = 0
    errored: int = 0
    reaped: int = 0
    results: list[RunOutcome] = field(default_factory=list)

    def add(self, outcome: RunOutcome) -> None:
        self.results.append(outcome)
        self.processed += 1
        if outcome.triggered and outcome.status is RunStatus.COMPLETED:
            self.triggered += 1
        if outcome.status is RunStatus.FAILED:
            self.errored += 1

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "success": True,
            "processed": self.processed,
            "triggered": self.triggered,
            "errored": self.errored,
            "reaped": self.reaped,
            "results": [outcome.to_dict() for outcome in self.results],
        }


class AutomationProcessor:
    """
    Runs automations in batch or manual mode.

    Features:
    - Per-automation leases against overlapping invocations
    - Bounded concurrency (sequential by default)
    - Stale run reaping before each batch
    - Per-automation failure isolation
    """

    def __init__(
        self,
        store: AutomationStore,
        recorder: RunRecorder,
        orchestrator: RunOrchestrator,
        max_concurrency: int = 1,
        lease_ttl_seconds: float = 600,
        stale_run_after_seconds: float = 900,
    ):
        """
        Initialize the processor.

        Args:
            store: Automation persistence
            recorder: Run history
            orchestrator: Executes individual automations
            max_concurrency: Automations processed at the same time
            lease_ttl_seconds: Lifetime of a processing lease
            stale_run_after_seconds: Age after which a running run is reaped
        """
        self.store = store
        self.recorder = recorder
        self.orchestrator = orchestrator
        self.max_concurrency = max(1, max_concurrency)
        self.lease_ttl_seconds = lease_ttl_seconds
        self.stale_run_after = timedelta(seconds=stale_run_after_seconds)

    async def process(
        self,
        automation_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BatchSummary:
        """
        Process all active automations, or a single one in manual mode.

        Args:
            automation_id: If given, run only this automation, bypassing
                its trigger guards
            now: Current instant

        Returns:
            BatchSummary

        Raises:
            AutomationNotFoundError: If ``automation_id`` is unknown
        """
        now = to_utc(now or utc_now())
        summary = BatchSummary()
        summary.reaped = len(self.recorder.reap_stale(self.stale_run_after, now))

        if automation_id is not None:
            self.store.get_automation(automation_id)
            ids = [automation_id]
            force = True
        else:
            ids = self.store.list_automation_ids(active_only=True)
            force = False

        logger.info(f"Processing {len(ids)} automations (manual={force})")

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _guarded(aid: str) -> RunOutcome:
            async with semaphore:
                return await self._process_one(aid, now, force)

        outcomes = await asyncio.gather(*(_guarded(aid) for aid in ids))
        for outcome in outcomes:
            summary.add(outcome)

        logger.info(
            f"Processed {summary.processed} automations: "
            f"{summary.triggered} triggered, {summary.errored} errored"
        )
        return summary

    async def _process_one(self, automation_id: str, now: datetime, force: bool) -> RunOutcome:
        try:
            automation = self.store.get_automation(automation_id)
        except (AutomationNotFoundError, ValueError) as e:
            logger.error(f"Could not load automation {automation_id}: {e}")
            run_id = None
            try:
                workspace_id = self.store.get_workspace_id(automation_id)
                run_id = self.recorder.record_failed(
                    automation_id, workspace_id, f"Could not load automation: {e}", now
                ).id
            except AutomationNotFoundError:
                logger.warning(f"Automation {automation_id} was deleted during processing")
            return RunOutcome(
                automation_id=automation_id,
                name="",
                triggered=False,
                status=RunStatus.FAILED,
                run_id=run_id,
                error=str(e),
            )

        holder = str(uuid4())
        if not self.store.acquire_lease(automation.id, holder, self.lease_ttl_seconds):
            run = self.recorder.record_skipped(automation, LEASE_HELD_REASON, now)
            return RunOutcome.from_run(automation, run, triggered=False)

        try:
            return await self.orchestrator.run(automation, now, force=force)
        except Exception as e:
            logger.exception(f"Unexpected error processing automation {automation.id}")
            return RunOutcome(
                automation_id=automation.id,
                name=automation.name,
                triggered=False,
                status=RunStatus.FAILED,
                error=str(e),
            )
        finally:
            self.store.release_lease(automation.id, holder)
