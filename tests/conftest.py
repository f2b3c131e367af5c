"""Pytest fixtures for Content Autopilot tests."""
import os

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-autopilot-tests")

import pytest
from datetime import datetime, timedelta, timezone
from typing import Generator
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from autopilot.api.server import app, limiter
from autopilot.api.auth.jwt import create_access_token
from autopilot.automations.engine import AutomationEngine
from autopilot.automations.inbox import NotificationInbox
from autopilot.automations.models import (
    AutomationDefinition,
    FeedItem,
    ScheduleTrigger,
)
from autopilot.automations.orchestrator import RunOrchestrator
from autopilot.automations.processor import AutomationProcessor
from autopilot.automations.recorder import RunRecorder
from autopilot.automations.store import AutomationStore
from autopilot.automations.triggers import TriggerEvaluator
from autopilot.integrations.generation import GeneratedText
from autopilot.integrations.images import GeneratedImage
from autopilot.integrations.publish import PublishResponse


# --- Authentication Fixtures ---

@pytest.fixture
def valid_token() -> str:
    """Generate a valid JWT token carrying every scope."""
    return create_access_token(
        subject="test-user",
        scopes=["read", "write", "automations:run"],
        expires_delta=timedelta(hours=1),
    )


@pytest.fixture
def expired_token() -> str:
    """Generate an expired JWT token for testing."""
    return create_access_token(
        subject="test-user",
        scopes=["read", "write", "automations:run"],
        expires_delta=timedelta(seconds=-1),  # Already expired
    )


@pytest.fixture
def token_with_scopes() -> callable:
    """Factory fixture to create tokens with specific scopes."""
    def _create_token(scopes: list[str]) -> str:
        return create_access_token(
            subject="test-user",
            scopes=scopes,
            expires_delta=timedelta(hours=1),
        )
    return _create_token


@pytest.fixture
def auth_headers(valid_token: str) -> dict[str, str]:
    """Generate Authorization headers with a valid token."""
    return {"Authorization": f"Bearer {valid_token}"}


# --- Persistence Fixtures ---

@pytest.fixture
def store() -> AutomationStore:
    """In-memory automation store."""
    return AutomationStore()


@pytest.fixture
def recorder() -> RunRecorder:
    """In-memory run recorder."""
    return RunRecorder()


@pytest.fixture
def inbox() -> NotificationInbox:
    """In-memory notification inbox."""
    return NotificationInbox()


# --- Collaborator Mocks ---

@pytest.fixture
def feed_adapter() -> MagicMock:
    """Feed adapter returning no items unless a test says otherwise."""
    adapter = MagicMock()
    adapter.fetch_items = AsyncMock(return_value=[])
    adapter.close = AsyncMock()
    return adapter


@pytest.fixture
def content_service() -> MagicMock:
    """Content generation service returning a fixed post."""
    service = MagicMock()
    service.generate = AsyncMock(
        return_value=GeneratedText(text="Fresh take on the launch. Worth a read.")
    )
    return service


@pytest.fixture
def image_service() -> MagicMock:
    """Image generation service returning a hosted image."""
    service = MagicMock()
    service.generate = AsyncMock(
        return_value=GeneratedImage(
            media_url="https://cdn.example.com/generated.png",
            prompt="image prompt",
        )
    )
    return service


@pytest.fixture
def publish_service() -> MagicMock:
    """Publish service confirming every post."""
    service = MagicMock()
    service.publish = AsyncMock(
        return_value=PublishResponse(
            success=True,
            external_id="post-123",
            post_url="https://x.com/acme/status/123",
        )
    )
    return service


# --- Engine Fixtures ---

@pytest.fixture
def evaluator(feed_adapter: MagicMock) -> TriggerEvaluator:
    """Trigger evaluator working in UTC."""
    return TriggerEvaluator(feed_adapter, timezone_name="UTC")


@pytest.fixture
def orchestrator(
    store: AutomationStore,
    recorder: RunRecorder,
    evaluator: TriggerEvaluator,
    inbox: NotificationInbox,
    content_service: MagicMock,
    image_service: MagicMock,
    publish_service: MagicMock,
) -> RunOrchestrator:
    """Orchestrator wired to in-memory persistence and mocked collaborators."""
    return RunOrchestrator(
        store,
        recorder,
        evaluator,
        inbox=inbox,
        content_service=content_service,
        image_service=image_service,
        publish_service=publish_service,
    )


@pytest.fixture
def processor(
    store: AutomationStore,
    recorder: RunRecorder,
    orchestrator: RunOrchestrator,
) -> AutomationProcessor:
    """Sequential batch processor."""
    return AutomationProcessor(store, recorder, orchestrator)


@pytest.fixture
def make_automation(store: AutomationStore) -> callable:
    """Factory fixture creating and persisting automations."""
    def _make(trigger=None, **overrides) -> AutomationDefinition:
        fields = {
            "workspace_id": "ws-1",
            "name": "Daily tips",
            "trigger": trigger or ScheduleTrigger(cadence="daily"),
            "created_by": "user-1",
        }
        fields.update(overrides)
        automation = AutomationDefinition(**fields)
        store.save_automation(automation)
        return automation
    return _make


@pytest.fixture
def sample_feed_item() -> FeedItem:
    """A feed entry with two images."""
    return FeedItem(
        title="Launch recap",
        link="https://blog.example.com/launch-recap",
        description="<p>Everything we <b>shipped</b> this week.</p>",
        content="<p>Long form body about the launch.</p>",
        published_at=datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc),
        guid="post-42",
        media_urls=[
            "https://blog.example.com/images/hero.jpg",
            "https://blog.example.com/images/chart.png",
        ],
    )


# --- Client Fixtures ---

@pytest.fixture
def api_engine(
    store: AutomationStore,
    recorder: RunRecorder,
    inbox: NotificationInbox,
    orchestrator: RunOrchestrator,
    processor: AutomationProcessor,
) -> AutomationEngine:
    """Engine assembled from the in-memory fixtures."""
    return AutomationEngine(
        store=store,
        recorder=recorder,
        inbox=inbox,
        orchestrator=orchestrator,
        processor=processor,
    )


@pytest.fixture
def disable_rate_limiting():
    """Disable rate limiting for tests."""
    with patch.object(limiter, "enabled", False):
        yield


@pytest.fixture
def test_client(
    api_engine: AutomationEngine,
    disable_rate_limiting,
) -> Generator[TestClient, None, None]:
    """Create a test client backed by the in-memory engine."""
    with patch("autopilot.api.server.engine", api_engine):
        with TestClient(app) as client:
            yield client
