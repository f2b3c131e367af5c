"""
Engine assembly.

Builds the store, recorder, inbox, orchestrator, processor and scheduler
from settings, choosing collaborator implementations from what is
configured.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from .inbox import NotificationInbox
from .orchestrator import RunOrchestrator
from .processor import AutomationProcessor
from .recorder import RunRecorder
from .scheduler import AutomationScheduler
from .store import AutomationStore
from .triggers import TriggerEvaluator
from ..core.config import Settings
from ..integrations.feeds import FeedSourceAdapter
from ..integrations.generation import ContentGenerationService, HTTPContentService, LLMContentService
from ..integrations.images import HTTPImageService
from ..integrations.publish import HTTPPublishService
from ..integrations.research import ResearchClient
from ..llm.gemini import GeminiProvider

logger = logging.getLogger(__name__)


@dataclass
class AutomationEngine:
    """All long-lived components of the automation engine."""
    store: AutomationStore
    recorder: RunRecorder
    inbox: NotificationInbox
    orchestrator: RunOrchestrator
    processor: AutomationProcessor
    scheduler: Optional[AutomationScheduler] = None
    closeables: list = field(default_factory=list)

    async def close(self) -> None:
        """Stop the scheduler and close HTTP clients."""
        if self.scheduler is not None:
            await self.scheduler.stop()
        for client in self.closeables:
            await client.close()


def _content_service(settings: Settings) -> Optional[ContentGenerationService]:
    if settings.content_service_url:
        return HTTPContentService(
            settings.content_service_url,
            api_key=settings.service_api_key,
            timeout=settings.generation_timeout_seconds,
        )
    if os.environ.get("GOOGLE_API_KEY"):
        provider = GeminiProvider(default_model=settings.default_content_model)
        return LLMContentService(provider)
    logger.warning("No content generation service configured; content steps will be skipped")
    return None


def build_engine(settings: Settings, db_path: Optional[str] = None) -> AutomationEngine:
    """
    Assemble the engine.

    Args:
        settings: Application settings
        db_path: Override of ``settings.database_path``

    Returns:
        AutomationEngine ready to process automations
    """
    db_path = db_path or settings.database_path
    store = AutomationStore(db_path)
    recorder = RunRecorder(db_path)
    inbox = NotificationInbox(db_path)

    feeds = FeedSourceAdapter(
        timeout=settings.feed_timeout_seconds,
        max_media=settings.feed_max_media,
    )
    closeables: list = [feeds]

    content_service = _content_service(settings)
    if isinstance(content_service, HTTPContentService):
        closeables.append(content_service)

    image_service = None
    if settings.image_service_url:
        image_service = HTTPImageService(
            settings.image_service_url,
            api_key=settings.service_api_key,
            timeout=settings.image_timeout_seconds,
        )
        closeables.append(image_service)

    publish_service = None
    if settings.publish_service_url:
        publish_service = HTTPPublishService(
            settings.publish_service_url,
            api_key=settings.service_api_key,
            timeout=settings.publish_timeout_seconds,
        )
        closeables.append(publish_service)

    research = ResearchClient(timeout=settings.research_timeout_seconds)
    closeables.append(research)

    orchestrator = RunOrchestrator(
        store,
        recorder,
        TriggerEvaluator(feeds, timezone_name=settings.timezone),
        inbox=inbox,
        content_service=content_service,
        image_service=image_service,
        publish_service=publish_service,
        research=research if research.is_configured else None,
        research_content_types=settings.research_content_types,
        run_timeout=settings.run_timeout_seconds,
        artifact_max_media=settings.artifact_max_media,
    )
    processor = AutomationProcessor(
        store,
        recorder,
        orchestrator,
        max_concurrency=settings.max_concurrency,
        lease_ttl_seconds=settings.lease_ttl_seconds,
        stale_run_after_seconds=settings.stale_run_after_seconds,
    )

    scheduler = None
    if settings.scheduler_enabled:
        scheduler = AutomationScheduler(
            processor,
            interval_seconds=settings.scheduler_interval_seconds,
            inbox=inbox,
            alert_user_id=settings.scheduler_alert_user_id,
        )

    return AutomationEngine(
        store=store,
        recorder=recorder,
        inbox=inbox,
        orchestrator=orchestrator,
        processor=processor,
        scheduler=scheduler,
        closeables=closeables,
    )
