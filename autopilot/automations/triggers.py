"""
Trigger evaluation.

Decides whether an automation should fire at a given instant. Schedule
evaluation is a pure function of the configuration, the last fire time and
the current time; feed evaluation consults the feed adapter. Nothing here
mutates automation bookkeeping.

Usage:
    evaluator = TriggerEvaluator(feed_adapter, timezone_name="UTC")
    decision = await evaluator.should_fire(automation, now)
    if decision.fire:
        window = firing_window(automation, decision, now, run_id)
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from .models import (
    AutomationDefinition,
    Cadence,
    FeedItem,
    FeedTrigger,
    ScheduleTrigger,
    TriggerType,
    WebhookTrigger,
)
from ..integrations.feeds import FeedSourceAdapter

logger = logging.getLogger(__name__)


@dataclass
class TriggerDecision:
    """Outcome of evaluating a trigger."""
    fire: bool
    reason: str
    fresh_item: Optional[FeedItem] = None
    dedupe_key: Optional[str] = None
    forced: bool = False

    @classmethod
    def skip(cls, reason: str) -> "TriggerDecision":
        return cls(fire=False, reason=reason)


def local_time(moment: datetime, tz: ZoneInfo) -> datetime:
    """Express a moment in the engine's local timezone. Naive values are taken as local."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=tz)
    return moment.astimezone(tz)


def weekday_index(day: date) -> int:
    """Weekday number with 0 = Sunday through 6 = Saturday."""
    return (day.weekday() + 1) % 7


def schedule_should_fire(
    trigger: ScheduleTrigger,
    last_triggered_at: Optional[datetime],
    now: datetime,
    tz: ZoneInfo = ZoneInfo("UTC"),
) -> bool:
    """
    Decide whether a schedule trigger fires at ``now``.

    Args:
        trigger: Schedule configuration
        last_triggered_at: When the automation last fired, if ever
        now: Current instant
        tz: Local timezone the schedule is expressed in

    Returns:
        True if every guard passes and the cadence matches today
    """
    current = local_time(now, tz)

    if last_triggered_at is not None:
        if local_time(last_triggered_at, tz).date() == current.date():
            return False

    configured_time = trigger.time_of_day()
    if configured_time is not None:
        if (current.hour, current.minute) < (configured_time.hour, configured_time.minute):
            return False

    if trigger.cadence == Cadence.DAILY.value:
        return True
    if trigger.cadence == Cadence.WEEKLY.value:
        return weekday_index(current.date()) in trigger.days
    if trigger.cadence == Cadence.MONTHLY.value:
        return current.day in trigger.days
    return False


class TriggerEvaluator:
    """
    Evaluates the trigger of an automation.

    Dispatch is exhaustive over the trigger union; an unknown variant is a
    programming error and raises TypeError.
    """

    def __init__(self, feed_adapter: FeedSourceAdapter, timezone_name: str = "UTC"):
        """
        Initialize the evaluator.

        Args:
            feed_adapter: Adapter used for feed triggers
            timezone_name: IANA timezone schedules are expressed in
        """
        self.feed_adapter = feed_adapter
        self.tz = ZoneInfo(timezone_name)

    async def should_fire(
        self,
        automation: AutomationDefinition,
        now: Optional[datetime] = None,
        force: bool = False,
    ) -> TriggerDecision:
        """
        Evaluate an automation's trigger.

        Args:
            automation: Automation to evaluate
            now: Current instant (defaults to the current UTC time)
            force: Manual "run now" mode, bypassing time and dedupe guards

        Returns:
            TriggerDecision describing whether to fire and with which item
        """
        now = now or datetime.now(timezone.utc)
        trigger = automation.trigger

        if isinstance(trigger, ScheduleTrigger):
            return self._evaluate_schedule(automation, trigger, now, force)
        if isinstance(trigger, FeedTrigger):
            return await self._evaluate_feed(trigger, force)
        if isinstance(trigger, WebhookTrigger):
            if force:
                return TriggerDecision(fire=True, reason="Manual run", forced=True)
            return TriggerDecision.skip("Webhook automations fire on inbound deliveries only")
        raise TypeError(f"Unsupported trigger configuration: {type(trigger).__name__}")

    def _evaluate_schedule(
        self,
        automation: AutomationDefinition,
        trigger: ScheduleTrigger,
        now: datetime,
        force: bool,
    ) -> TriggerDecision:
        if force:
            return TriggerDecision(fire=True, reason="Manual run", forced=True)
        if schedule_should_fire(trigger, automation.last_triggered_at, now, self.tz):
            return TriggerDecision(fire=True, reason=f"Schedule ({trigger.cadence}) is due")
        return TriggerDecision.skip("Schedule is not due")

    async def _evaluate_feed(self, trigger: FeedTrigger, force: bool) -> TriggerDecision:
        items = await self.feed_adapter.fetch_items(trigger.url)
        newest = items[0] if items else None

        if force:
            return TriggerDecision(
                fire=True,
                reason="Manual run",
                fresh_item=newest,
                dedupe_key=newest.guid if newest else None,
                forced=True,
            )

        if newest is None:
            return TriggerDecision.skip("Feed returned no items")
        if newest.guid == trigger.last_seen_guid:
            return TriggerDecision.skip("No new feed item")

        logger.info(f"New feed item at {trigger.url}: {newest.title}")
        return TriggerDecision(
            fire=True,
            reason="New feed item",
            fresh_item=newest,
            dedupe_key=newest.guid,
        )

    def firing_window(
        self,
        automation: AutomationDefinition,
        decision: TriggerDecision,
        now: datetime,
        run_id: str,
    ) -> str:
        """
        Idempotency scope of a fire.

        Scheduled fires are unique per local day and feed fires per item guid.
        Manual runs are unique per run.
        """
        if decision.forced:
            return f"manual:{run_id}"
        kind = automation.trigger_type
        if kind is TriggerType.SCHEDULE:
            return f"schedule:{local_time(now, self.tz).date().isoformat()}"
        if kind is TriggerType.FEED:
            return f"feed:{decision.dedupe_key}"
        return f"webhook:{decision.dedupe_key or run_id}"
