"""
Prompt composition for automated content generation.

Renders an automation's prompt template against the item that triggered
it, prepends enrichment context and appends the fixed reminder of the
automation's content type. Templates use ``{{name}}`` placeholders and are
rendered in a sandboxed Jinja2 environment.

Usage:
    composer = ContextComposer()
    prompt = composer.build_prompt(
        automation.prompt_template,
        fresh_item,
        automation,
        enrichment=Enrichment(knowledge="Brand voice: plain and direct"),
    )
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

from jinja2 import FileSystemLoader, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from .formats import FORMAT_REMINDERS, STRUCTURED_KINDS, content_label
from ..automations.models import AutomationDefinition, FeedItem, ImageStyle, to_utc
from ..integrations.feeds import strip_html

logger = logging.getLogger(__name__)

DESCRIPTION_LIMIT = 500
CONTENT_LIMIT = 3000
MIN_TEMPLATE_LENGTH = 10

IMAGE_STYLE_MODIFIERS: dict[ImageStyle, str] = {
    ImageStyle.PHOTOGRAPHIC: "Style: realistic photograph, natural lighting, high detail.",
    ImageStyle.ILLUSTRATION: "Style: digital illustration, clean lines, expressive colors.",
    ImageStyle.MINIMALIST: "Style: minimalist composition, generous negative space, muted palette.",
    ImageStyle.VIBRANT: "Style: bold saturated colors, high contrast, energetic composition.",
}


def time_of_day_bucket(hour: int) -> str:
    """Coarse part of the day for an hour in 0-23."""
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 18:
        return "afternoon"
    if 18 <= hour < 22:
        return "evening"
    return "night"


@dataclass
class Enrichment:
    """Higher-priority context placed ahead of the source prompt."""
    examples: list[str] = field(default_factory=list)
    knowledge: Optional[str] = None
    research: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.examples or self.knowledge or self.research)

    def render(self) -> str:
        sections = []
        if self.knowledge:
            sections.append(f"## Client knowledge\n{self.knowledge.strip()}")
        if self.examples:
            numbered = "\n\n".join(
                f"Example {i}:\n{example.strip()}" for i, example in enumerate(self.examples, 1)
            )
            sections.append(f"## Examples that performed well\n{numbered}")
        if self.research:
            sections.append(f"## Recent research\n{self.research.strip()}")
        return "\n\n".join(sections)


class ContextComposer:
    """
    Builds generation prompts from templates and triggering items.

    Uses Jinja2 for both packaged default templates and user-authored
    automation templates.
    """

    def __init__(self, template_dir: Optional[Path] = None, timezone_name: str = "UTC"):
        """
        Initialize the composer.

        Args:
            template_dir: Path to Jinja2 templates. Defaults to autopilot/content/templates.
            timezone_name: IANA timezone the time-of-day variable is expressed in
        """
        self.tz = ZoneInfo(timezone_name)
        if template_dir is None:
            template_dir = Path(__file__).parent / "templates"

        self.template_dir = template_dir
        self.env = SandboxedEnvironment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    @staticmethod
    def is_usable_template(template: Optional[str]) -> bool:
        """A template is usable when it carries enough non-blank text."""
        if not template:
            return False
        return len("".join(template.split())) >= MIN_TEMPLATE_LENGTH

    def template_variables(
        self,
        fresh_item: Optional[FeedItem],
        automation: AutomationDefinition,
        now: Optional[datetime] = None,
    ) -> dict:
        """Values available to ``{{name}}`` placeholders."""
        now = now or datetime.now(timezone.utc)
        description = strip_html(fresh_item.description)[:DESCRIPTION_LIMIT] if fresh_item else ""
        content = ""
        if fresh_item:
            content = strip_html(fresh_item.content or fresh_item.description)[:CONTENT_LIMIT]
        image_count = len(fresh_item.media_urls) if fresh_item else 0

        return {
            "title": (fresh_item.title if fresh_item else "") or automation.name,
            "description": description,
            "link": fresh_item.link if fresh_item else "",
            "content": content,
            "images": (
                f"{image_count} images available from the source"
                if image_count
                else "No images available"
            ),
            "time_of_day": time_of_day_bucket(to_utc(now).astimezone(self.tz).hour),
            "automation_name": automation.name,
            "label": content_label(automation.content_type),
        }

    def _render_default(self, variables: dict) -> str:
        return self.env.get_template("default_prompt.jinja2").render(**variables).strip()

    def _render_body(self, template: Optional[str], variables: dict) -> str:
        if not self.is_usable_template(template):
            logger.debug("Prompt template missing or too short, using default prompt")
            return self._render_default(variables)
        try:
            return self.env.from_string(template).render(**variables).strip()
        except TemplateError as e:
            logger.warning(f"Prompt template failed to render, using default prompt: {e}")
            return self._render_default(variables)

    def format_appendix(
        self,
        automation: AutomationDefinition,
        fresh_item: Optional[FeedItem],
    ) -> str:
        """Fixed reminder for the automation's content type."""
        lines = []
        reminder = FORMAT_REMINDERS.get(automation.content_type)
        if reminder:
            lines.append(reminder)
        if automation.content_type in STRUCTURED_KINDS and fresh_item and fresh_item.media_urls:
            lines.append(
                f"{len(fresh_item.media_urls)} images from the source will be attached "
                "across the parts; refer to them where it helps."
            )
        return "\n".join(lines)

    def build_prompt(
        self,
        template: Optional[str],
        fresh_item: Optional[FeedItem],
        automation: AutomationDefinition,
        enrichment: Optional[Enrichment] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """
        Compose the full generation prompt.

        Args:
            template: Automation prompt template, possibly empty
            fresh_item: Item that triggered the run, if any
            automation: Automation being executed
            enrichment: Optional examples, knowledge and research context
            now: Instant used for the time-of-day variable

        Returns:
            Prompt text ready for the content generation service
        """
        variables = self.template_variables(fresh_item, automation, now)
        body = self._render_body(template, variables)

        parts = []
        if enrichment and not enrichment.is_empty:
            parts.append(enrichment.render())
            parts.append("---")
        parts.append(body)

        appendix = self.format_appendix(automation, fresh_item)
        if appendix:
            parts.append(f"Format requirements:\n{appendix}")

        return "\n\n".join(parts)

    def build_image_prompt(
        self,
        automation: AutomationDefinition,
        fresh_item: Optional[FeedItem],
        title: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """Compose the prompt for the image generation service."""
        variables = self.template_variables(fresh_item, automation, now)
        if title:
            variables["title"] = title

        template = automation.image_prompt_template
        if self.is_usable_template(template):
            try:
                body = self.env.from_string(template).render(**variables).strip()
            except TemplateError as e:
                logger.warning(f"Image prompt template failed to render: {e}")
                body = self.env.get_template("image_prompt.jinja2").render(**variables).strip()
        else:
            body = self.env.get_template("image_prompt.jinja2").render(**variables).strip()

        return f"{body}\n{IMAGE_STYLE_MODIFIERS[automation.image_style]}"
