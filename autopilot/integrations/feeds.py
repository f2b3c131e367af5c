"""
Syndication feed acquisition.

Fetches RSS 2.0 and Atom feeds over HTTP and normalizes entries into
FeedItem objects, newest first, with candidate media discovered from the
feed's own media elements and from images embedded in the entry HTML.

Usage:
    adapter = FeedSourceAdapter()
    items = await adapter.fetch_items("https://example.com/feed.xml")
    newest = items[0] if items else None
    await adapter.close()
"""
import html
import logging
import re
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Iterable, Optional

import httpx

from ..automations.models import FeedItem

logger = logging.getLogger(__name__)

NAMESPACES = {
    "atom": "http://www.w3.org/2005/Atom",
    "content": "http://purl.org/rss/1.0/modules/content/",
    "media": "http://search.yahoo.com/mrss/",
    "dc": "http://purl.org/dc/elements/1.1/",
}

FEED_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; ContentAutopilot/1.0; +feed-reader)",
    "Accept": "application/rss+xml, application/atom+xml, application/xml, text/xml, */*",
}

# Substrings identifying tracking pixels and decorative icons
IGNORED_MEDIA_MARKERS = ("pixel", "tracking", "icon", "gravatar", "feeds.feedburner")

_IMG_PATTERN = re.compile(
    r"<img\b[^>]*?\b(?:data-src|src)\s*=\s*[\"']([^\"']+)[\"']", re.IGNORECASE
)
_TAG_PATTERN = re.compile(r"<[^>]+>")
_SPACE_PATTERN = re.compile(r"\s+")


def strip_html(text: Optional[str]) -> str:
    """Remove markup and collapse whitespace."""
    if not text:
        return ""
    plain = html.unescape(_TAG_PATTERN.sub(" ", text))
    return _SPACE_PATTERN.sub(" ", plain).strip()


def _text(element: Optional[ET.Element]) -> str:
    if element is None:
        return ""
    return "".join(element.itertext()).strip()


def _is_wanted_media(url: str) -> bool:
    lowered = url.lower()
    if not lowered.startswith(("http://", "https://", "//")):
        return False
    return not any(marker in lowered for marker in IGNORED_MEDIA_MARKERS)


def images_in_html(markup: Optional[str]) -> list[str]:
    """Return image references embedded in an HTML fragment, in document order."""
    if not markup:
        return []
    return [html.unescape(url) for url in _IMG_PATTERN.findall(markup)]


def _structured_media(entry: ET.Element) -> list[str]:
    """Media declared by feed elements, in priority order."""
    urls: list[str] = []
    containers = [entry] + entry.findall("media:group", NAMESPACES)

    for container in containers:
        for media in container.findall("media:content", NAMESPACES):
            medium = media.get("medium", "")
            media_type = media.get("type", "")
            if medium in ("", "image") and (not media_type or media_type.startswith("image/")):
                if media.get("url"):
                    urls.append(media.get("url"))

    for container in containers:
        for thumb in container.findall("media:thumbnail", NAMESPACES):
            if thumb.get("url"):
                urls.append(thumb.get("url"))

    for enclosure in entry.findall("enclosure"):
        if enclosure.get("type", "").startswith("image/") and enclosure.get("url"):
            urls.append(enclosure.get("url"))

    for link in entry.findall("atom:link", NAMESPACES):
        if link.get("rel") == "enclosure" and link.get("type", "").startswith("image/"):
            urls.append(link.get("href"))

    return urls


def collect_media(candidates: Iterable[str], limit: int) -> list[str]:
    """Filter, de-duplicate and cap candidate media URLs, keeping order."""
    seen: set[str] = set()
    media: list[str] = []
    for url in candidates:
        url = (url or "").strip()
        if not url or url in seen or not _is_wanted_media(url):
            continue
        seen.add(url)
        media.append(url)
        if len(media) >= limit:
            break
    return media


def _parse_date(value: str) -> Optional[datetime]:
    if not value:
        return None
    value = value.strip()
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        parsed = None
    if parsed is None:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _rss_item(item: ET.Element, max_media: int) -> FeedItem:
    description = item.findtext("description") or ""
    content = item.findtext("content:encoded", default="", namespaces=NAMESPACES)
    link = (item.findtext("link") or "").strip()
    published = _parse_date(
        item.findtext("pubDate")
        or item.findtext("dc:date", default="", namespaces=NAMESPACES)
    )
    candidates = (
        _structured_media(item) + images_in_html(content) + images_in_html(description)
    )
    return FeedItem(
        title=strip_html(_text(item.find("title"))),
        link=link,
        description=description.strip(),
        content=content.strip(),
        published_at=published,
        guid=(item.findtext("guid") or "").strip() or link,
        media_urls=collect_media(candidates, max_media),
    )


def _atom_link(entry: ET.Element) -> str:
    fallback = ""
    for link in entry.findall("atom:link", NAMESPACES):
        rel = link.get("rel", "alternate")
        if rel == "alternate":
            return link.get("href", "")
        fallback = fallback or link.get("href", "")
    return fallback


def _atom_entry(entry: ET.Element, max_media: int) -> FeedItem:
    summary = _text(entry.find("atom:summary", NAMESPACES))
    content = _text(entry.find("atom:content", NAMESPACES))
    link = _atom_link(entry)
    published = _parse_date(
        entry.findtext("atom:published", default="", namespaces=NAMESPACES)
        or entry.findtext("atom:updated", default="", namespaces=NAMESPACES)
    )
    candidates = _structured_media(entry) + images_in_html(content) + images_in_html(summary)
    return FeedItem(
        title=strip_html(_text(entry.find("atom:title", NAMESPACES))),
        link=link,
        description=summary,
        content=content,
        published_at=published,
        guid=(entry.findtext("atom:id", default="", namespaces=NAMESPACES) or "").strip() or link,
        media_urls=collect_media(candidates, max_media),
    )


def _sort_newest_first(items: list[FeedItem]) -> list[FeedItem]:
    dated = [item for item in items if item.published_at is not None]
    undated = [item for item in items if item.published_at is None]
    dated.sort(key=lambda item: item.published_at, reverse=True)
    return dated + undated


def parse_feed(xml_text: str, max_media: int = 8) -> list[FeedItem]:
    """
    Parse an RSS 2.0 or Atom document.

    Args:
        xml_text: Raw feed document
        max_media: Cap on media URLs per item

    Returns:
        Items ordered by publish date, newest first

    Raises:
        xml.etree.ElementTree.ParseError: If the document is not well-formed
    """
    root = ET.fromstring(xml_text.strip())

    if root.tag == f"{{{NAMESPACES['atom']}}}feed":
        items = [_atom_entry(e, max_media) for e in root.findall("atom:entry", NAMESPACES)]
    else:
        entries = root.findall("./channel/item") or root.findall(".//item")
        items = [_rss_item(e, max_media) for e in entries]

    return _sort_newest_first(items)


class FeedSourceAdapter:
    """
    Fetches and parses syndication feeds.

    Fetch and parse failures are logged and produce an empty list so a
    broken feed simply means "nothing new" to the caller.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
        max_media: int = 8,
    ):
        """
        Initialize the adapter.

        Args:
            client: Optional preconfigured HTTP client
            timeout: Request timeout in seconds
            max_media: Cap on media URLs per item
        """
        self.timeout = timeout
        self.max_media = max_media
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers=FEED_HEADERS,
            )
        return self._client

    async def fetch_items(self, url: str) -> list[FeedItem]:
        """
        Fetch a feed and return its items newest first.

        Args:
            url: Feed URL

        Returns:
            Parsed items, or an empty list on any fetch or parse failure
        """
        client = await self._get_client()
        try:
            response = await client.get(url, headers=FEED_HEADERS)
            response.raise_for_status()
            items = parse_feed(response.text, self.max_media)
        except httpx.HTTPError as e:
            logger.warning(f"Feed fetch failed for {url}: {e}")
            return []
        except (ET.ParseError, ValueError) as e:
            logger.warning(f"Feed parse failed for {url}: {e}")
            return []

        logger.info(f"Fetched {len(items)} items from {url}")
        return items

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
