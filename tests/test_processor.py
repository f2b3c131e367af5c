"""Tests for batch processing."""
import asyncio
import json
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

from autopilot.automations.models import RunStatus, ScheduleTrigger
from autopilot.automations.orchestrator import RunOutcome
from autopilot.automations.processor import LEASE_HELD_REASON, AutomationProcessor, BatchSummary
from autopilot.automations.recorder import STALE_RUN_ERROR
from autopilot.automations.store import AutomationNotFoundError

NOW = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


class TestBatchMode:
    """Tests for processing every active automation."""

    @pytest.mark.asyncio
    async def test_processes_active_automations(self, processor, make_automation):
        due = make_automation(ScheduleTrigger(cadence="daily"), name="Due")
        make_automation(ScheduleTrigger(cadence="weekly", days=(0,)), name="Not due")
        make_automation(name="Paused", is_active=False)

        summary = await processor.process(now=NOW)

        assert summary.processed == 2
        assert summary.triggered == 1
        assert summary.errored == 0
        by_name = {outcome.name: outcome for outcome in summary.results}
        assert by_name["Due"].status is RunStatus.COMPLETED
        assert by_name["Due"].automation_id == due.id
        assert by_name["Not due"].status is RunStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, store, processor, make_automation):
        broken = make_automation(name="Broken")
        healthy = make_automation(name="Healthy")
        store._execute(
            "UPDATE automations SET trigger_config = ? WHERE id = ?",
            (json.dumps({"url": "https://example.com/rss"}), broken.id),
        )

        summary = await processor.process(now=NOW)

        assert summary.processed == 2
        assert summary.errored == 1
        assert summary.triggered == 1
        by_id = {outcome.automation_id: outcome for outcome in summary.results}
        assert by_id[broken.id].status is RunStatus.FAILED
        assert by_id[healthy.id].status is RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_unloadable_automation_records_failed_run(self, store, recorder, processor, make_automation):
        broken = make_automation(name="Broken")
        store._execute(
            "UPDATE automations SET trigger_config = ? WHERE id = ?",
            (json.dumps({"cadence": "daily", "time": "9am"}), broken.id),
        )

        summary = await processor.process(now=NOW)

        runs = recorder.query(automation_id=broken.id)
        assert len(runs) == 1
        assert runs[0].status is RunStatus.FAILED
        assert runs[0].workspace_id == "ws-1"
        assert runs[0].error.startswith("Could not load automation: ")
        assert summary.results[0].run_id == runs[0].id

    @pytest.mark.asyncio
    async def test_unexpected_orchestrator_error(self, store, recorder, make_automation):
        orchestrator = MagicMock()
        orchestrator.run = AsyncMock(side_effect=RuntimeError("unexpected"))
        processor = AutomationProcessor(store, recorder, orchestrator)
        automation = make_automation()

        summary = await processor.process(now=NOW)

        assert summary.errored == 1
        assert summary.results[0].error == "unexpected"
        # Lease released even though the run blew up
        assert store.acquire_lease(automation.id, "someone-else", ttl_seconds=60)

    @pytest.mark.asyncio
    async def test_second_batch_same_day_is_skipped(self, store, processor, make_automation):
        make_automation()

        first = await processor.process(now=NOW)
        second = await processor.process(now=NOW + timedelta(hours=3))

        assert first.triggered == 1
        assert second.triggered == 0
        assert second.results[0].status is RunStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_reaps_stale_runs_first(self, recorder, processor, make_automation):
        automation = make_automation(is_active=False)
        stale = recorder.start(automation, NOW - timedelta(hours=2))

        summary = await processor.process(now=NOW)

        assert summary.reaped == 1
        assert recorder.get_run(stale.id).error == STALE_RUN_ERROR


class TestLeases:
    """Tests for lease contention."""

    @pytest.mark.asyncio
    async def test_held_lease_records_skipped_run(self, store, recorder, processor, make_automation):
        automation = make_automation()
        store.acquire_lease(automation.id, "other-invocation", ttl_seconds=600)

        summary = await processor.process(now=NOW)

        outcome = summary.results[0]
        assert outcome.status is RunStatus.SKIPPED
        assert outcome.triggered is False
        assert recorder.get_run(outcome.run_id).result == LEASE_HELD_REASON

    @pytest.mark.asyncio
    async def test_concurrent_processing_respects_limit(self, store, recorder, make_automation):
        active = 0
        peak = 0

        async def tracked_run(automation, now, force=False):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return RunOutcome(automation.id, automation.name, False, RunStatus.SKIPPED)

        orchestrator = MagicMock()
        orchestrator.run = AsyncMock(side_effect=tracked_run)
        for i in range(5):
            make_automation(name=f"Automation {i}")

        processor = AutomationProcessor(store, recorder, orchestrator, max_concurrency=2)
        summary = await processor.process(now=NOW)

        assert summary.processed == 5
        assert peak == 2


class TestManualMode:
    """Tests for running a single automation on demand."""

    @pytest.mark.asyncio
    async def test_manual_run_bypasses_guards(self, store, processor, make_automation):
        automation = make_automation(
            ScheduleTrigger(cadence="weekly", time="23:00", days=(0,)),
            last_triggered_at=NOW,
        )

        summary = await processor.process(automation_id=automation.id, now=NOW)

        assert summary.processed == 1
        assert summary.triggered == 1
        assert store.get_automation(automation.id).items_created == 1

    @pytest.mark.asyncio
    async def test_manual_run_of_inactive_automation(self, processor, make_automation):
        automation = make_automation(is_active=False)
        summary = await processor.process(automation_id=automation.id, now=NOW)
        assert summary.triggered == 1

    @pytest.mark.asyncio
    async def test_repeated_manual_runs_each_fire(self, store, processor, make_automation):
        automation = make_automation()

        await processor.process(automation_id=automation.id, now=NOW)
        await processor.process(automation_id=automation.id, now=NOW)

        assert store.get_automation(automation.id).items_created == 2

    @pytest.mark.asyncio
    async def test_unknown_id_raises_before_running(self, recorder, processor):
        with pytest.raises(AutomationNotFoundError):
            await processor.process(automation_id="missing", now=NOW)
        assert recorder.query() == []


class TestBatchSummary:
    def test_to_dict(self):
        summary = BatchSummary()
        summary.add(RunOutcome("a-1", "One", True, RunStatus.COMPLETED, run_id="r-1", result="Created: One"))
        summary.add(RunOutcome("a-2", "Two", False, RunStatus.FAILED, error="boom"))

        data = summary.to_dict()

        assert data["success"] is True
        assert data["processed"] == 2
        assert data["triggered"] == 1
        assert data["errored"] == 1
        assert data["results"][0] == {
            "id": "a-1",
            "name": "One",
            "triggered": True,
            "status": "completed",
            "run_id": "r-1",
            "result": "Created: One",
        }
        assert data["results"][1]["error"] == "boom"
