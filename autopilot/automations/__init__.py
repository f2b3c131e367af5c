"""Automation definitions, trigger evaluation and run execution."""
from .models import (
    AutomationDefinition,
    FeedItem,
    FeedTrigger,
    ImageStyle,
    ProducedArtifact,
    Run,
    RunStatus,
    ScheduleTrigger,
    TriggerConfigError,
    TriggerType,
    WebhookTrigger,
    parse_trigger_config,
)

__all__ = [
    "AutomationDefinition",
    "FeedItem",
    "FeedTrigger",
    "ImageStyle",
    "ProducedArtifact",
    "Run",
    "RunStatus",
    "ScheduleTrigger",
    "TriggerConfigError",
    "TriggerType",
    "WebhookTrigger",
    "parse_trigger_config",
]
