"""
Web research for long-form content.

Queries Perplexity's sonar models for a recent, cited briefing on the
topic of a triggering item. Failures never raise; they come back as a
brief carrying an error so generation can proceed without research.
"""
import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import aiohttp

logger = logging.getLogger(__name__)

RESEARCH_SYSTEM_PROMPT = """You are a research assistant for a content marketing team. Summarize what is new and relevant about the given topic so a writer can build on it. Include:
- Key recent developments
- Data points worth quoting
- Angles that are getting attention

Be factual and cite your sources."""


@dataclass
class ResearchBrief:
    """Synthesized research on a topic."""
    topic: str
    answer: str = ""
    citations: list[str] = field(default_factory=list)
    model: str = ""
    error: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.answer)

    def as_context(self) -> str:
        """Render the brief for inclusion in a prompt."""
        if not self.ok:
            return ""
        lines = [self.answer.strip()]
        if self.citations:
            lines.append("Sources:")
            lines.extend(f"- {url}" for url in self.citations[:5])
        return "\n".join(lines)


class ResearchClient:
    """Executes research queries via the Perplexity API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = 60.0,
        model: str = "sonar",
    ):
        """
        Initialize the research client.

        Args:
            api_key: Perplexity API key. Defaults to PERPLEXITY_API_KEY env var.
            timeout: Request timeout in seconds
            model: Perplexity model (sonar, sonar-pro)
        """
        self.api_key = api_key or os.getenv("PERPLEXITY_API_KEY")
        self.base_url = "https://api.perplexity.ai"
        self.timeout = timeout
        self.model = model
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure aiohttp session exists."""
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    async def research_topic(self, topic: str, search_recency: str = "week") -> ResearchBrief:
        """
        Research a topic.

        Args:
            topic: Research query
            search_recency: How recent (day, week, month, year)

        Returns:
            ResearchBrief, with ``error`` set when the query failed
        """
        if not self.api_key:
            return ResearchBrief(topic=topic, error="No API key")

        session = await self._ensure_session()
        logger.info(f"Researching via Perplexity: {topic}")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": RESEARCH_SYSTEM_PROMPT},
                {"role": "user", "content": f"Research the latest on: {topic}"},
            ],
            "search_recency_filter": search_recency,
            "return_citations": True,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with session.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.error(f"Perplexity error ({response.status}): {error_text}")
                    return ResearchBrief(topic=topic, error=f"API error: {response.status}")
                data = await response.json()
        except asyncio.TimeoutError:
            logger.error(f"Perplexity timeout for '{topic}'")
            return ResearchBrief(topic=topic, error="Timeout")
        except Exception as e:
            logger.error(f"Perplexity error for '{topic}': {e}")
            return ResearchBrief(topic=topic, error=str(e) or type(e).__name__)

        return self._parse_response(topic, data)

    def _parse_response(self, topic: str, data) -> ResearchBrief:
        """Parse a Perplexity API response."""
        try:
            choice = (data.get("choices") or [{}])[0]
            return ResearchBrief(
                topic=topic,
                answer=choice.get("message", {}).get("content") or "",
                citations=list(data.get("citations") or []),
                model=data.get("model") or "",
            )
        except (AttributeError, IndexError, KeyError, TypeError) as e:
            logger.error(f"Unexpected Perplexity response for '{topic}': {e}")
            return ResearchBrief(topic=topic, error="Malformed response")

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session:
            await self._session.close()
            self._session = None
