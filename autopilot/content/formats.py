"""
Content type catalogue.

Maps each content type to the platform it is published on, the format
hint the generation service expects, and the deterministic reminder
appended to every generation prompt for that type.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Platform(str, Enum):
    """Supported publishing platforms."""
    TWITTER = "twitter"
    LINKEDIN = "linkedin"
    INSTAGRAM = "instagram"
    TIKTOK = "tiktok"
    YOUTUBE = "youtube"
    NEWSLETTER = "newsletter"
    BLOG = "blog"
    EMAIL = "email"


class StructureKind(str, Enum):
    """Composite content shapes the structure parser can produce."""
    THREAD = "thread"
    CAROUSEL = "carousel"


@dataclass
class PlatformConstraints:
    """Constraints for a specific platform."""
    part_max_length: Optional[int] = None


PLATFORM_CONSTRAINTS: dict[Platform, PlatformConstraints] = {
    Platform.TWITTER: PlatformConstraints(part_max_length=280),
    Platform.INSTAGRAM: PlatformConstraints(part_max_length=2200),
}


CONTENT_PLATFORMS: dict[str, Platform] = {
    "tweet": Platform.TWITTER,
    "thread": Platform.TWITTER,
    "x_article": Platform.TWITTER,
    "linkedin_post": Platform.LINKEDIN,
    "carousel": Platform.INSTAGRAM,
    "stories": Platform.INSTAGRAM,
    "instagram_post": Platform.INSTAGRAM,
    "static_image": Platform.INSTAGRAM,
    "short_video": Platform.TIKTOK,
    "long_video": Platform.YOUTUBE,
    "newsletter": Platform.NEWSLETTER,
    "blog_post": Platform.BLOG,
    "email_marketing": Platform.EMAIL,
}

# Format hint sent to the content generation service
CONTENT_FORMATS: dict[str, str] = {
    "tweet": "tweet",
    "thread": "thread",
    "x_article": "linkedin",
    "linkedin_post": "linkedin",
    "carousel": "carousel",
    "stories": "stories",
    "instagram_post": "post",
    "static_image": "post",
    "short_video": "reels",
    "long_video": "reels",
    "newsletter": "newsletter",
    "blog_post": "newsletter",
    "case_study": "newsletter",
    "report": "newsletter",
    "email_marketing": "newsletter",
    "document": "post",
    "social_post": "post",
    "other": "post",
}

CONTENT_TYPE_LABELS: dict[str, str] = {
    "tweet": "Tweet",
    "thread": "Twitter/X thread",
    "x_article": "X article",
    "linkedin_post": "LinkedIn post",
    "carousel": "Instagram carousel",
    "stories": "Instagram stories",
    "instagram_post": "Instagram post",
    "static_image": "Static image post",
    "short_video": "Short video script",
    "long_video": "Long video script",
    "newsletter": "Newsletter",
    "blog_post": "Blog post",
    "case_study": "Case study",
    "report": "Report",
    "email_marketing": "Marketing email",
    "document": "Document",
    "social_post": "Social media post",
    "other": "Content piece",
}

FORMAT_REMINDERS: dict[str, str] = {
    "tweet": "Write a single tweet of at most 280 characters. No thread numbering.",
    "thread": (
        "Write a thread of 5 to 10 tweets. Number each tweet as \"1/\", \"2/\" and so on "
        "at the start of its own line. Every tweet must fit in 280 characters."
    ),
    "x_article": "Write a long-form X article with a strong headline and short paragraphs.",
    "linkedin_post": (
        "Write a LinkedIn post under 3000 characters. Open with a hook line and "
        "keep paragraphs short."
    ),
    "carousel": (
        "Write a carousel of 5 to 10 slides. Start each slide with \"Slide N:\" on its "
        "own line, followed by a short title and one or two sentences."
    ),
    "stories": "Write a sequence of 3 to 5 story frames with one short line each.",
    "instagram_post": "Write an Instagram caption under 2200 characters with relevant hashtags.",
    "static_image": "Write a short caption and the headline text for a single image.",
    "short_video": "Write a short video script under 60 seconds with a hook in the first line.",
    "long_video": "Write a video script with an intro, sections and a call to action.",
    "newsletter": (
        "Write a newsletter with a subject line, an introduction and clearly "
        "titled sections."
    ),
    "blog_post": "Write a blog post with a title, subheadings and a conclusion.",
    "email_marketing": "Write a marketing email with a subject line, body and one call to action.",
}

STRUCTURED_KINDS: dict[str, StructureKind] = {
    "thread": StructureKind.THREAD,
    "carousel": StructureKind.CAROUSEL,
}

DEFAULT_FORMAT = "post"


def resolve_platform(content_type: str, platform: Optional[str] = None) -> Optional[str]:
    """Platform of an automation: its own setting, else the content type's platform."""
    if platform:
        return platform
    mapped = CONTENT_PLATFORMS.get(content_type)
    return mapped.value if mapped else None


def resolve_format(content_type: str) -> str:
    """Format hint for the content generation service."""
    return CONTENT_FORMATS.get(content_type, DEFAULT_FORMAT)


def content_label(content_type: str) -> str:
    return CONTENT_TYPE_LABELS.get(content_type, content_type.replace("_", " ").title())


def structure_kind(content_type: str) -> Optional[StructureKind]:
    """Composite shape for a content type, if it has one."""
    return STRUCTURED_KINDS.get(content_type)


def part_max_length(kind: StructureKind) -> Optional[int]:
    """Length ceiling for a single part of a composite content kind."""
    platform = Platform.TWITTER if kind is StructureKind.THREAD else Platform.INSTAGRAM
    return PLATFORM_CONSTRAINTS[platform].part_max_length
