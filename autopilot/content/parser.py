"""
Structure parsing for generated content.

Turns a freeform block of generated text into an ordered list of thread
messages or carousel slides. Parsing strategies are tried in a fixed
order; the first one producing enough parts wins. When none does, the
parser returns None and the caller keeps the text as a single block.

Usage:
    parser = ContentStructureParser()
    parts = parser.parse(generated_text, StructureKind.THREAD)
    if parts:
        parser.distribute_media(parts, artifact.media_urls)
"""
import json
import re
from dataclasses import dataclass, field
from typing import Callable, Optional

from .formats import StructureKind, part_max_length

MIN_PARTS: dict[StructureKind, int] = {
    StructureKind.THREAD: 2,
    StructureKind.CAROUSEL: 3,
}

PART_ID_PREFIX: dict[StructureKind, str] = {
    StructureKind.THREAD: "tweet",
    StructureKind.CAROUSEL: "slide",
}

CAROUSEL_TITLE_MAX = 60

_SEPARATOR = re.compile(r"\n[ \t]*-{3,}[ \t]*\n")
_NUMBERED = re.compile(r"^[ \t]*\**(\d{1,2})[ \t]*[/.)]\**\s+", re.MULTILINE)
_LABELED = re.compile(
    r"^[ \t]*(?:\*\*|\[)?[ \t]*(?:tweet|slide|page)[ \t]*(\d{1,2})[ \t]*(?:\*\*|\])?[ \t]*[:.\-]?[ \t]*(?:\*\*)?[ \t]*",
    re.IGNORECASE | re.MULTILINE,
)
_PREFIX_LABEL = re.compile(
    r"^\s*(?:(?:\*\*)?(?:tweet|slide|page)\s*\d{1,2}(?:\*\*)?\s*[:.\-]?\s*|\d{1,2}\s*/\s*)",
    re.IGNORECASE,
)
_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_BOLD_LINE = re.compile(r"^\*\*(.+?)\*\*\s*$")

_LIST_KEYS = ("tweets", "slides", "parts", "thread", "carousel", "items")
_TEXT_KEYS = ("text", "content", "body")


@dataclass
class StructuredPart:
    """One message of a thread or one slide of a carousel."""
    id: str
    text: str
    media_urls: list[str] = field(default_factory=list)
    title: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"id": self.id, "text": self.text, "media_urls": list(self.media_urls)}
        if self.title:
            data["title"] = self.title
        return data


def truncate_smart(text: str, length: int, suffix: str = "...") -> str:
    """Truncate text at word boundary."""
    if len(text) <= length:
        return text

    truncated = text[: length - len(suffix)]
    last_space = truncated.rfind(" ")

    if last_space > length // 2:
        truncated = truncated[:last_space]

    return truncated.rstrip() + suffix


def _segments_after_markers(text: str, pattern: re.Pattern) -> list[str]:
    """Text between consecutive line-leading markers. Preamble before the first marker is dropped."""
    matches = list(pattern.finditer(text))
    segments = []
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        segments.append(text[match.end():end])
    return segments


def split_by_separator(text: str) -> list[str]:
    """Split on lines consisting only of ``---``."""
    parts = _SEPARATOR.split(f"\n{text}\n")
    if len(parts) < 2:
        return []
    return [_PREFIX_LABEL.sub("", part.strip(), count=1) for part in parts]


def split_by_numbered_prefix(text: str) -> list[str]:
    """Split on line-leading ``N/``, ``N.`` or ``N)`` markers."""
    return _segments_after_markers(text, _NUMBERED)


def split_by_labeled_prefix(text: str) -> list[str]:
    """Split on line-leading ``Tweet N:``, ``Slide N:`` or ``Page N:`` labels."""
    return _segments_after_markers(text, _LABELED)


def _parts_from_data(data) -> list[str]:
    if isinstance(data, dict):
        for key in _LIST_KEYS:
            if isinstance(data.get(key), list):
                return _parts_from_data(data[key])
        return []
    if not isinstance(data, list):
        return []

    parts = []
    for entry in data:
        if isinstance(entry, str):
            parts.append(entry)
        elif isinstance(entry, dict):
            text = next((entry[k] for k in _TEXT_KEYS if isinstance(entry.get(k), str)), "")
            title = entry.get("title")
            if title and text:
                text = f"**{title}**\n{text}"
            parts.append(text or title or "")
    return parts


def split_from_structured_data(text: str) -> list[str]:
    """Read parts from JSON embedded in the text, fenced or bare."""
    candidates = [m.group(1) for m in _FENCED_JSON.finditer(text)]
    stripped = text.strip()
    if stripped[:1] in ("[", "{"):
        candidates.append(stripped)

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except ValueError:
            continue
        parts = _parts_from_data(data)
        if parts:
            return parts
    return []


@dataclass
class ParsingStrategy:
    """A named way of splitting text into parts."""
    name: str
    split: Callable[[str], list[str]]


STRATEGIES: list[ParsingStrategy] = [
    ParsingStrategy("separator", split_by_separator),
    ParsingStrategy("numbered", split_by_numbered_prefix),
    ParsingStrategy("labeled", split_by_labeled_prefix),
    ParsingStrategy("structured_data", split_from_structured_data),
]


def split_carousel_title(text: str) -> tuple[Optional[str], str]:
    """Separate a slide title (bold or short first line) from the slide body."""
    lines = text.split("\n", 1)
    first = lines[0].strip()
    rest = lines[1].strip() if len(lines) > 1 else ""

    bold = _BOLD_LINE.match(first)
    if bold:
        return bold.group(1).strip(), rest
    if rest and len(first) < CAROUSEL_TITLE_MAX:
        return first.rstrip(":"), rest
    return None, text


class ContentStructureParser:
    """
    Parses generated text into thread messages or carousel slides.

    Strategies run in the order of ``STRATEGIES``; each is usable on its own
    through the module-level split functions.
    """

    def __init__(self, strategies: Optional[list[ParsingStrategy]] = None):
        self.strategies = strategies if strategies is not None else STRATEGIES

    def parse(self, raw_text: str, kind: StructureKind) -> Optional[list[StructuredPart]]:
        """
        Split text into parts.

        Args:
            raw_text: Generated text
            kind: Composite shape to produce

        Returns:
            Ordered parts, or None if no strategy yields enough parts
        """
        if not raw_text or not raw_text.strip():
            return None

        text = raw_text.replace("\r\n", "\n").strip()
        minimum = MIN_PARTS[kind]

        for strategy in self.strategies:
            segments = [s.strip() for s in strategy.split(text)]
            segments = [s for s in segments if s]
            if len(segments) >= minimum:
                return self._build_parts(segments, kind)

        return None

    def _build_parts(self, segments: list[str], kind: StructureKind) -> list[StructuredPart]:
        ceiling = part_max_length(kind)
        prefix = PART_ID_PREFIX[kind]
        parts = []

        for index, segment in enumerate(segments, 1):
            title = None
            if kind is StructureKind.CAROUSEL:
                title, segment = split_carousel_title(segment)
            if ceiling:
                segment = truncate_smart(segment, ceiling)
            parts.append(StructuredPart(id=f"{prefix}-{index}", text=segment, title=title))

        return parts

    @staticmethod
    def distribute_media(
        parts: list[StructuredPart],
        media_urls: list[str],
        per_part_cap: int = 1,
    ) -> list[StructuredPart]:
        """
        Assign media to parts round-robin, at most ``per_part_cap`` each.

        Args:
            parts: Parts to receive media, mutated in place
            media_urls: Candidate media in priority order
            per_part_cap: Maximum media per part

        Returns:
            The same parts
        """
        if not parts or per_part_cap <= 0:
            return parts

        capacity = len(parts) * per_part_cap
        for index, url in enumerate(media_urls[:capacity]):
            parts[index % len(parts)].media_urls.append(url)

        return parts
