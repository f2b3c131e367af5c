"""
Run orchestration for a single automation.

A run is recorded, the trigger is evaluated and, on fire, the pipeline
creates an artifact, optionally generates its text and image, optionally
publishes it, advances the automation's bookkeeping and notifies its
owner. Content, image and publish steps are isolated: their failures are
recorded on the artifact and in the run details without failing the run.
Anything else that goes wrong fails the run and frees its firing window
for a retry.

Usage:
    orchestrator = RunOrchestrator(store, recorder, evaluator, inbox=inbox,
                                   content_service=content_service)
    outcome = await orchestrator.run(automation)
    print(outcome.status, outcome.run_id)
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from .inbox import NotificationInbox
from .models import (
    ArtifactStatus,
    AutomationDefinition,
    FeedItem,
    FeedTrigger,
    ProducedArtifact,
    Run,
    RunStatus,
    WebhookTrigger,
    to_utc,
    utc_now,
)
from .recorder import RunRecorder
from .store import AutomationStore
from .triggers import TriggerEvaluator
from ..content.composer import ContextComposer, Enrichment
from ..content.formats import StructureKind, resolve_format, resolve_platform, structure_kind
from ..content.parser import ContentStructureParser
from ..integrations.feeds import collect_media, strip_html
from ..integrations.generation import ContentGenerationService
from ..integrations.images import ImageGenerationService
from ..integrations.publish import PublishOutcome, PublishResponse, PublishService, PublishStatus
from ..integrations.research import ResearchClient

logger = logging.getLogger(__name__)

SKIP_REASON = "Trigger conditions not met"
DUPLICATE_WINDOW_REASON = "Already fired for this window"
DESCRIPTION_LIMIT = 500
PREVIEW_LIMIT = 500

STRUCTURE_METADATA_KEYS = {
    StructureKind.THREAD: "thread_tweets",
    StructureKind.CAROUSEL: "carousel_slides",
}


class StepStatus(str, Enum):
    """Result of an optional pipeline step."""
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class StepOutcome:
    """Explicit result of an optional step, including why it did not run."""
    status: StepStatus
    detail: Optional[str] = None

    @classmethod
    def done(cls, detail: Optional[str] = None) -> "StepOutcome":
        return cls(StepStatus.DONE, detail)

    @classmethod
    def skipped(cls, reason: str) -> "StepOutcome":
        return cls(StepStatus.SKIPPED, reason)

    @classmethod
    def failed(cls, error: str) -> "StepOutcome":
        return cls(StepStatus.FAILED, error)

    def to_dict(self) -> dict:
        return {"status": self.status.value, "detail": self.detail}


@dataclass
class RunOutcome:
    """Per-automation entry of a processing summary."""
    automation_id: str
    name: str
    triggered: bool
    status: RunStatus
    run_id: Optional[str] = None
    result: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_run(cls, automation: AutomationDefinition, run: Run, triggered: bool) -> "RunOutcome":
        return cls(
            automation_id=automation.id,
            name=automation.name,
            triggered=triggered,
            status=run.status,
            run_id=run.id,
            result=run.result,
            error=run.error,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        data = {
            "id": self.automation_id,
            "name": self.name,
            "triggered": self.triggered,
            "status": self.status.value,
            "run_id": self.run_id,
        }
        if self.result:
            data["result"] = self.result
        if self.error:
            data["error"] = self.error
        return data


def feed_item_from_payload(payload: dict, delivery_id: Optional[str] = None) -> FeedItem:
    """Build the triggering item of an inbound webhook delivery."""
    media = payload.get("media_urls") or payload.get("images") or []
    if isinstance(media, str):
        media = [media]
    return FeedItem(
        title=str(payload.get("title") or ""),
        link=str(payload.get("link") or payload.get("url") or ""),
        description=str(payload.get("description") or ""),
        content=str(payload.get("content") or ""),
        guid=str(delivery_id or payload.get("id") or ""),
        media_urls=collect_media(media, 8),
    )


class RunOrchestrator:
    """
    Executes one automation end to end.

    Features:
    - Run row per evaluation, finalized exactly once
    - Idempotency key per firing window
    - Bounded run duration
    - Isolated content, image and publish steps
    """

    def __init__(
        self,
        store: AutomationStore,
        recorder: RunRecorder,
        evaluator: TriggerEvaluator,
        composer: Optional[ContextComposer] = None,
        parser: Optional[ContentStructureParser] = None,
        inbox: Optional[NotificationInbox] = None,
        content_service: Optional[ContentGenerationService] = None,
        image_service: Optional[ImageGenerationService] = None,
        publish_service: Optional[PublishService] = None,
        research: Optional[ResearchClient] = None,
        research_content_types: Optional[list[str]] = None,
        run_timeout: float = 300.0,
        artifact_max_media: int = 4,
        notify_timeout: float = 10.0,
    ):
        """
        Initialize the orchestrator.

        Args:
            store: Automation and artifact persistence
            recorder: Run history
            evaluator: Trigger evaluator
            composer: Prompt composer
            parser: Structure parser for threads and carousels
            inbox: Notification sink
            content_service: Text generation collaborator
            image_service: Image generation collaborator
            publish_service: Social publishing collaborator
            research: Web research client for long-form content types
            research_content_types: Content types that get research
            run_timeout: Upper bound in seconds for executing a fire
            artifact_max_media: Source media copied onto a new artifact
            notify_timeout: Upper bound in seconds for delivering the run notification
        """
        self.store = store
        self.recorder = recorder
        self.evaluator = evaluator
        self.composer = composer or ContextComposer(timezone_name=evaluator.tz.key)
        self.parser = parser or ContentStructureParser()
        self.inbox = inbox
        self.content_service = content_service
        self.image_service = image_service
        self.publish_service = publish_service
        self.research = research
        self.research_content_types = set(research_content_types or [])
        self.run_timeout = run_timeout
        self.artifact_max_media = artifact_max_media
        self.notify_timeout = notify_timeout

    async def run(
        self,
        automation: AutomationDefinition,
        now: Optional[datetime] = None,
        force: bool = False,
    ) -> RunOutcome:
        """
        Evaluate an automation and execute it if it fires.

        Args:
            automation: Automation to process
            now: Current instant (defaults to now, UTC)
            force: Manual run, bypassing trigger guards

        Returns:
            RunOutcome for the processing summary
        """
        now = to_utc(now or utc_now())
        run = self.recorder.start(automation, now)

        try:
            decision = await self.evaluator.should_fire(automation, now, force=force)
        except Exception as e:
            logger.error(f"Trigger evaluation failed for {automation.id}: {e}")
            self.recorder.finalize(run, RunStatus.FAILED, error=str(e))
            return RunOutcome.from_run(automation, run, triggered=False)

        if not decision.fire:
            self.recorder.finalize(
                run,
                RunStatus.SKIPPED,
                result=SKIP_REASON,
                trigger_data={"reason": decision.reason},
            )
            return RunOutcome.from_run(automation, run, triggered=False)

        window = self.evaluator.firing_window(automation, decision, now, run.id)
        return await self._fire(automation, run, decision.fresh_item, window, now)

    async def run_webhook(
        self,
        automation: AutomationDefinition,
        payload: dict,
        delivery_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RunOutcome:
        """
        Execute a webhook automation for an inbound delivery.

        Args:
            automation: Webhook automation
            payload: Delivery body; ``title``, ``link``, ``description``,
                ``content`` and ``media_urls`` feed the prompt
            delivery_id: Sender's delivery id, used as idempotency key
            now: Current instant

        Raises:
            ValueError: If the automation is not a webhook automation
        """
        if not isinstance(automation.trigger, WebhookTrigger):
            raise ValueError(f"Automation {automation.id} is not triggered by webhooks")

        now = to_utc(now or utc_now())
        run = self.recorder.start(automation, now)
        item = feed_item_from_payload(payload, delivery_id)
        window = f"webhook:{delivery_id or run.id}"
        return await self._fire(automation, run, item, window, now)

    async def _fire(
        self,
        automation: AutomationDefinition,
        run: Run,
        item: Optional[FeedItem],
        window: str,
        now: datetime,
    ) -> RunOutcome:
        try:
            claimed = self.store.claim_firing_window(automation.id, window, run.id)
        except Exception as e:
            logger.error(f"Could not claim firing window {window} for {automation.id}: {e}")
            self.recorder.finalize(
                run,
                RunStatus.FAILED,
                error=f"Could not claim firing window: {e}",
                trigger_data={"firing_window": window},
            )
            return RunOutcome.from_run(automation, run, triggered=False)

        if not claimed:
            self.recorder.finalize(
                run,
                RunStatus.SKIPPED,
                result=DUPLICATE_WINDOW_REASON,
                trigger_data={"firing_window": window},
            )
            return RunOutcome.from_run(automation, run, triggered=False)

        try:
            summary, trigger_data, artifact = await asyncio.wait_for(
                self._execute(automation, run, item, now),
                timeout=self.run_timeout,
            )
        except asyncio.TimeoutError:
            error = f"Run timed out after {self.run_timeout:g}s"
        except Exception as e:
            error = str(e) or type(e).__name__
        else:
            notification_error = await self._notify(automation, run, artifact, summary)
            if notification_error:
                trigger_data["notification_error"] = notification_error
            self.recorder.finalize(
                run,
                RunStatus.COMPLETED,
                result=summary,
                items_created=1,
                trigger_data=trigger_data,
            )
            return RunOutcome.from_run(automation, run, triggered=True)

        logger.error(f"Automation {automation.id} failed: {error}")
        self.store.release_firing_window(automation.id, window)
        self.recorder.finalize(
            run,
            RunStatus.FAILED,
            error=error,
            trigger_data={"source": item.snapshot() if item else None},
        )
        return RunOutcome.from_run(automation, run, triggered=True)

    async def _execute(
        self,
        automation: AutomationDefinition,
        run: Run,
        item: Optional[FeedItem],
        now: datetime,
    ) -> tuple[str, dict, ProducedArtifact]:
        platform = resolve_platform(automation.content_type, automation.platform)
        artifact = self._create_artifact(automation, run, item, platform)

        content_step = await self._generate_content(automation, artifact, item, platform, now)
        image_step = await self._generate_image(automation, artifact, item, platform, now)
        publish = await self._publish(automation, artifact, platform, now)

        trigger = automation.trigger
        if isinstance(trigger, FeedTrigger):
            self.store.record_fire(
                automation.id, now, trigger.with_seen(item.guid if item else None, now)
            )
        else:
            self.store.record_fire(automation.id, now)

        if content_step.status is StepStatus.DONE:
            summary = f"Created and generated: {artifact.title}"
        else:
            summary = f"Created: {artifact.title}"

        structure_key = STRUCTURE_METADATA_KEYS.get(structure_kind(automation.content_type))
        trigger_data = {
            "trigger_type": automation.trigger_type.value,
            "source": item.snapshot() if item else None,
            "artifact": {
                "id": artifact.id,
                "title": artifact.title,
                "status": artifact.status.value,
                "column_id": artifact.column_id,
            },
            "content_preview": (artifact.content or "")[:PREVIEW_LIMIT] or None,
            "structured_parts": len(artifact.metadata.get(structure_key, [])) if structure_key else 0,
            "steps": {"content": content_step.to_dict(), "image": image_step.to_dict()},
            "publish": publish.to_dict(),
        }

        return summary, trigger_data, artifact

    def _create_artifact(
        self,
        automation: AutomationDefinition,
        run: Run,
        item: Optional[FeedItem],
        platform: Optional[str],
    ) -> ProducedArtifact:
        column_id = automation.target_column_id or self.store.default_column_id(
            automation.workspace_id
        )
        artifact = ProducedArtifact(
            workspace_id=automation.workspace_id,
            client_id=automation.client_id,
            column_id=column_id,
            title=(item.title if item and item.title else automation.name),
            description=strip_html(item.description)[:DESCRIPTION_LIMIT] if item else "",
            platform=platform,
            content_type=automation.content_type,
            media_urls=list(item.media_urls[: self.artifact_max_media]) if item else [],
            position=self.store.next_position(column_id),
            created_by=automation.created_by,
            metadata={
                "automation_id": automation.id,
                "automation_name": automation.name,
                "run_id": run.id,
                "trigger_type": automation.trigger_type.value,
                "source_url": item.link if item else None,
                "source_images": list(item.media_urls) if item else [],
            },
        )
        self.store.save_artifact(artifact)
        return artifact

    async def _enrichment(
        self,
        automation: AutomationDefinition,
        item: Optional[FeedItem],
    ) -> Enrichment:
        enrichment = Enrichment()
        if automation.client_id:
            enrichment.knowledge = self.store.client_context(automation.client_id)
            enrichment.examples = self.store.published_examples(
                automation.client_id, automation.content_type
            )

        wants_research = automation.content_type in self.research_content_types
        if wants_research and self.research is not None and item and item.title:
            brief = await self.research.research_topic(item.title)
            if brief.ok:
                enrichment.research = brief.as_context()
            else:
                logger.info(f"Research unavailable for '{item.title}': {brief.error}")

        return enrichment

    async def _generate_content(
        self,
        automation: AutomationDefinition,
        artifact: ProducedArtifact,
        item: Optional[FeedItem],
        platform: Optional[str],
        now: datetime,
    ) -> StepOutcome:
        if not automation.auto_generate_content:
            return StepOutcome.skipped("Content generation disabled")
        if self.content_service is None:
            return StepOutcome.skipped("No content generation service configured")

        hints = {
            "format": resolve_format(automation.content_type),
            "platform": platform,
            "content_type": automation.content_type,
            "client_id": automation.client_id,
            "workspace_id": automation.workspace_id,
        }

        try:
            enrichment = await self._enrichment(automation, item)
        except Exception as e:
            logger.warning(f"Enrichment unavailable for artifact {artifact.id}: {e}")
            enrichment = None

        try:
            prompt = self.composer.build_prompt(
                automation.prompt_template, item, automation, enrichment, now
            )
            generated = await self.content_service.generate(prompt, hints)
        except Exception as e:
            logger.warning(f"Content generation failed for artifact {artifact.id}: {e}")
            artifact.metadata["generation_error"] = str(e)
            self.store.save_artifact(artifact)
            return StepOutcome.failed(str(e))

        artifact.content = generated.text

        detail = "single block"
        kind = structure_kind(automation.content_type)
        if kind is not None:
            parts = self.parser.parse(generated.text, kind)
            if parts:
                self.parser.distribute_media(parts, artifact.media_urls)
                artifact.metadata[STRUCTURE_METADATA_KEYS[kind]] = [p.to_dict() for p in parts]
                detail = f"{len(parts)} {kind.value} parts"

        self.store.save_artifact(artifact)
        return StepOutcome.done(detail)

    async def _generate_image(
        self,
        automation: AutomationDefinition,
        artifact: ProducedArtifact,
        item: Optional[FeedItem],
        platform: Optional[str],
        now: datetime,
    ) -> StepOutcome:
        if not automation.auto_generate_image:
            return StepOutcome.skipped("Image generation disabled")
        if self.image_service is None:
            return StepOutcome.skipped("No image generation service configured")

        prompt = self.composer.build_image_prompt(automation, item, artifact.title, now)
        try:
            image = await self.image_service.generate(
                prompt,
                {
                    "style": automation.image_style.value,
                    "platform": platform,
                    "content_type": automation.content_type,
                },
            )
        except Exception as e:
            logger.warning(f"Image generation failed for artifact {artifact.id}: {e}")
            artifact.metadata["image_error"] = str(e)
            self.store.save_artifact(artifact)
            return StepOutcome.failed(str(e))

        artifact.media_urls.insert(0, image.media_url)
        artifact.metadata["generated_image_url"] = image.media_url
        self.store.save_artifact(artifact)
        return StepOutcome.done(image.media_url)

    async def _publish(
        self,
        automation: AutomationDefinition,
        artifact: ProducedArtifact,
        platform: Optional[str],
        now: datetime,
    ) -> PublishOutcome:
        if not automation.auto_publish:
            return PublishOutcome.skipped("Auto publish disabled")

        outcome = self._publish_precondition(automation, artifact, platform)
        if outcome is None:
            credential_ref = self.store.credential_ref(automation.client_id, platform)
            try:
                response = await self.publish_service.publish(
                    platform, credential_ref, artifact.content, list(artifact.media_urls)
                )
            except Exception as e:
                logger.warning(f"Publishing artifact {artifact.id} raised: {e}")
                response = PublishResponse(success=False, error=str(e))
            outcome = PublishOutcome.from_response(response, published_at=now)

        if outcome.status is PublishStatus.PUBLISHED:
            artifact.status = ArtifactStatus.PUBLISHED
            artifact.metadata.update({
                "publish_status": outcome.status.value,
                "auto_published": True,
                "external_id": outcome.external_id,
                "post_url": outcome.post_url,
                "published_at": outcome.published_at.isoformat(),
            })
        elif outcome.status is PublishStatus.FAILED:
            artifact.status = ArtifactStatus.FAILED
            artifact.metadata.update({
                "publish_status": outcome.status.value,
                "publish_error": outcome.error,
            })
        else:
            artifact.metadata.update({
                "publish_status": outcome.status.value,
                "publish_skip_reason": outcome.reason,
            })

        self.store.save_artifact(artifact)
        return outcome

    def _publish_precondition(
        self,
        automation: AutomationDefinition,
        artifact: ProducedArtifact,
        platform: Optional[str],
    ) -> Optional[PublishOutcome]:
        """Skipped outcome when publishing cannot be attempted, else None."""
        if not artifact.content:
            return PublishOutcome.skipped("No content to publish")
        if not platform:
            return PublishOutcome.skipped("No platform for content type")
        if self.publish_service is None:
            return PublishOutcome.skipped("No publish service configured")
        if not self.store.credential_ref(automation.client_id, platform):
            return PublishOutcome.skipped(f"No publishing credentials for {platform}")
        return None

    async def _notify(
        self,
        automation: AutomationDefinition,
        run: Run,
        artifact: ProducedArtifact,
        summary: str,
    ) -> Optional[str]:
        """Notify the automation's creator, or the workspace owner. Returns an error message on failure."""
        if self.inbox is None:
            return None

        try:
            recipient = automation.created_by or self.store.workspace_owner(automation.workspace_id)
            if not recipient:
                return None
            await asyncio.wait_for(
                self.inbox.notify(
                    recipient,
                    f"Automation \"{automation.name}\" ran",
                    summary,
                    refs={
                        "automation_id": automation.id,
                        "run_id": run.id,
                        "artifact_id": artifact.id,
                    },
                ),
                timeout=self.notify_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Notification for run {run.id} timed out")
            return f"Notification timed out after {self.notify_timeout:g}s"
        except Exception as e:
            logger.warning(f"Notification for run {run.id} failed: {e}")
            return str(e)
        return None
