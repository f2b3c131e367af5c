"""
Domain models for automations, runs and produced artifacts.

Trigger configuration is a closed union of three variants. The persisted
JSON shape is validated against the trigger type when it is parsed, so a
feed automation can never carry schedule fields and vice versa.

Usage:
    trigger = parse_trigger_config("feed", {"url": "https://example.com/rss"})
    automation = AutomationDefinition(
        workspace_id="ws-1",
        name="Blog to thread",
        trigger=trigger,
        content_type="thread",
    )
    assert automation.trigger_type == TriggerType.FEED
"""
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, time as clock_time, timezone
from enum import Enum
from typing import Any, Optional, Union
from uuid import uuid4


class TriggerConfigError(ValueError):
    """Raised when a persisted trigger configuration does not match its type."""


class TriggerType(str, Enum):
    """Kinds of triggers an automation can have."""
    SCHEDULE = "schedule"
    FEED = "feed"
    WEBHOOK = "webhook"


class Cadence(str, Enum):
    """Recognized schedule cadences."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ImageStyle(str, Enum):
    """Visual styles for generated images."""
    PHOTOGRAPHIC = "photographic"
    ILLUSTRATION = "illustration"
    MINIMALIST = "minimalist"
    VIBRANT = "vibrant"


class RunStatus(str, Enum):
    """Lifecycle states of a run."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


class ArtifactStatus(str, Enum):
    """Status of a produced content item."""
    IDEA = "idea"
    PUBLISHED = "published"
    FAILED = "failed"


_TIME_PATTERN = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Normalize to an aware UTC datetime. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class ScheduleTrigger:
    """Fires on a calendar cadence, at most once per local day."""
    cadence: str = Cadence.DAILY.value
    time: Optional[str] = None
    days: tuple[int, ...] = ()

    def time_of_day(self) -> Optional[clock_time]:
        """Return the configured time as a ``datetime.time``."""
        if not self.time:
            return None
        match = _TIME_PATTERN.match(self.time)
        return clock_time(int(match.group(1)), int(match.group(2)))

    def to_dict(self) -> dict:
        return {"cadence": self.cadence, "time": self.time, "days": list(self.days)}


@dataclass(frozen=True)
class FeedTrigger:
    """Fires when a syndication feed exposes a new newest item."""
    url: str
    last_seen_guid: Optional[str] = None
    last_checked_at: Optional[datetime] = None

    def with_seen(self, guid: Optional[str], checked_at: datetime) -> "FeedTrigger":
        """Return a copy recording the newest guid processed."""
        return replace(
            self,
            last_seen_guid=guid or self.last_seen_guid,
            last_checked_at=checked_at,
        )

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "last_seen_guid": self.last_seen_guid,
            "last_checked_at": _format_datetime(self.last_checked_at),
        }


@dataclass(frozen=True)
class WebhookTrigger:
    """Fired only by inbound webhook deliveries."""
    secret: Optional[str] = None

    def to_dict(self) -> dict:
        return {"secret": self.secret}


TriggerConfig = Union[ScheduleTrigger, FeedTrigger, WebhookTrigger]

_TRIGGER_ALIASES = {"rss": TriggerType.FEED}


def parse_trigger_type(value: str) -> TriggerType:
    """Parse a trigger type name, accepting legacy spellings."""
    if value in _TRIGGER_ALIASES:
        return _TRIGGER_ALIASES[value]
    try:
        return TriggerType(value)
    except ValueError:
        raise TriggerConfigError(f"Unknown trigger type: {value}")


def parse_trigger_config(trigger_type: str, payload: Optional[dict]) -> TriggerConfig:
    """
    Build a typed trigger configuration from its persisted JSON form.

    Args:
        trigger_type: Trigger type name (``schedule``, ``feed``/``rss``, ``webhook``)
        payload: Persisted configuration object

    Returns:
        The matching trigger variant

    Raises:
        TriggerConfigError: If the payload does not fit the trigger type
    """
    kind = parse_trigger_type(trigger_type)
    payload = payload or {}
    if not isinstance(payload, dict):
        raise TriggerConfigError("Trigger configuration must be an object")

    if kind is TriggerType.SCHEDULE:
        if "url" in payload:
            raise TriggerConfigError("Schedule trigger cannot carry a feed url")
        cadence = payload.get("cadence") or payload.get("type") or Cadence.DAILY.value
        time_value = payload.get("time") or None
        if time_value is not None and not _TIME_PATTERN.match(str(time_value)):
            raise TriggerConfigError(f"Invalid schedule time: {time_value}")
        days = payload.get("days") or []
        try:
            days = tuple(int(day) for day in days)
        except (TypeError, ValueError):
            raise TriggerConfigError(f"Invalid schedule days: {days}")
        return ScheduleTrigger(cadence=str(cadence), time=time_value, days=days)

    if kind is TriggerType.FEED:
        url = payload.get("url")
        if not url:
            raise TriggerConfigError("Feed trigger requires a url")
        try:
            checked = parse_datetime(
                payload.get("last_checked_at") or payload.get("last_checked")
            )
        except ValueError:
            raise TriggerConfigError("Invalid last_checked_at timestamp")
        return FeedTrigger(
            url=url,
            last_seen_guid=payload.get("last_seen_guid") or payload.get("last_guid"),
            last_checked_at=checked,
        )

    if "url" in payload or "cadence" in payload:
        raise TriggerConfigError("Webhook trigger only accepts a secret")
    return WebhookTrigger(secret=payload.get("secret"))


def trigger_type_of(trigger: TriggerConfig) -> TriggerType:
    """Return the trigger type of a configuration variant."""
    if isinstance(trigger, ScheduleTrigger):
        return TriggerType.SCHEDULE
    if isinstance(trigger, FeedTrigger):
        return TriggerType.FEED
    if isinstance(trigger, WebhookTrigger):
        return TriggerType.WEBHOOK
    raise TypeError(f"Unsupported trigger configuration: {type(trigger).__name__}")


@dataclass
class AutomationDefinition:
    """A configured rule producing content when its trigger fires."""
    workspace_id: str
    name: str
    trigger: TriggerConfig
    id: str = field(default_factory=lambda: str(uuid4()))
    client_id: Optional[str] = None
    is_active: bool = True
    content_type: str = "social_post"
    platform: Optional[str] = None
    target_column_id: Optional[str] = None
    prompt_template: Optional[str] = None
    auto_generate_content: bool = False
    auto_generate_image: bool = False
    auto_publish: bool = False
    image_style: ImageStyle = ImageStyle.PHOTOGRAPHIC
    image_prompt_template: Optional[str] = None
    last_triggered_at: Optional[datetime] = None
    items_created: int = 0
    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    @property
    def trigger_type(self) -> TriggerType:
        return trigger_type_of(self.trigger)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "client_id": self.client_id,
            "name": self.name,
            "is_active": self.is_active,
            "trigger_type": self.trigger_type.value,
            "trigger_config": self.trigger.to_dict(),
            "content_type": self.content_type,
            "platform": self.platform,
            "target_column_id": self.target_column_id,
            "prompt_template": self.prompt_template,
            "auto_generate_content": self.auto_generate_content,
            "auto_generate_image": self.auto_generate_image,
            "auto_publish": self.auto_publish,
            "image_style": self.image_style.value,
            "image_prompt_template": self.image_prompt_template,
            "last_triggered_at": _format_datetime(self.last_triggered_at),
            "items_created": self.items_created,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class FeedItem:
    """A normalized entry of a syndication feed."""
    title: str = ""
    link: str = ""
    description: str = ""
    content: str = ""
    published_at: Optional[datetime] = None
    guid: str = ""
    media_urls: list[str] = field(default_factory=list)

    def __post_init__(self):
        if not self.guid:
            self.guid = self.link or self.title

    @property
    def image_url(self) -> Optional[str]:
        return self.media_urls[0] if self.media_urls else None

    def snapshot(self) -> dict:
        """Compact form kept inside a run's trigger data."""
        return {
            "title": self.title,
            "link": self.link,
            "guid": self.guid,
            "published_at": _format_datetime(self.published_at),
            "images_count": len(self.media_urls),
        }


@dataclass
class Run:
    """One evaluation-and-execution attempt of one automation."""
    automation_id: str
    workspace_id: str
    id: str = field(default_factory=lambda: str(uuid4()))
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    result: Optional[str] = None
    error: Optional[str] = None
    items_created: int = 0
    trigger_data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "automation_id": self.automation_id,
            "workspace_id": self.workspace_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": _format_datetime(self.completed_at),
            "duration_ms": self.duration_ms,
            "result": self.result,
            "error": self.error,
            "items_created": self.items_created,
            "trigger_data": self.trigger_data,
        }


@dataclass
class ProducedArtifact:
    """A content item created by a run."""
    workspace_id: str
    title: str
    content_type: str
    id: str = field(default_factory=lambda: str(uuid4()))
    client_id: Optional[str] = None
    column_id: Optional[str] = None
    description: str = ""
    platform: Optional[str] = None
    status: ArtifactStatus = ArtifactStatus.IDEA
    media_urls: list[str] = field(default_factory=list)
    content: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    position: int = 0
    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "client_id": self.client_id,
            "column_id": self.column_id,
            "title": self.title,
            "description": self.description,
            "platform": self.platform,
            "content_type": self.content_type,
            "status": self.status.value,
            "media_urls": list(self.media_urls),
            "content": self.content,
            "metadata": self.metadata,
            "position": self.position,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
        }
