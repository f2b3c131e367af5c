"""
Content generation service clients.

Two implementations share one contract: a remote content agent reached
over HTTP, and a service backed directly by an LLM provider.

Usage:
    service = HTTPContentService("https://agents.example.com/content", api_key="...")
    generated = await service.generate(prompt, {"format": "thread", "platform": "twitter"})
    print(generated.text)
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

import httpx

from ..llm.base import LLMProvider

logger = logging.getLogger(__name__)


class GenerationError(Exception):
    """Raised when the content generation service cannot produce text."""


@dataclass
class GeneratedText:
    """Text returned by a generation service."""
    text: str
    model: Optional[str] = None
    usage: dict[str, int] = field(default_factory=dict)


class ContentGenerationService(ABC):
    """Turns a prompt and format hints into text."""

    @abstractmethod
    async def generate(self, prompt: str, format_hints: dict) -> GeneratedText:
        """
        Generate text for a prompt.

        Args:
            prompt: Composed generation prompt
            format_hints: ``format``, ``platform``, ``content_type`` and
                optional ``client_id`` / ``workspace_id``

        Returns:
            GeneratedText

        Raises:
            GenerationError: If no usable text was produced
        """
        pass


class HTTPContentService(ContentGenerationService):
    """Content agent reached over HTTP."""

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def generate(self, prompt: str, format_hints: dict) -> GeneratedText:
        payload = {
            "message": prompt,
            "format": format_hints.get("format"),
            "platform": format_hints.get("platform"),
            "contentType": format_hints.get("content_type"),
            "clientId": format_hints.get("client_id"),
            "workspaceId": format_hints.get("workspace_id"),
            "stream": False,
        }
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        client = await self._get_client()
        try:
            response = await client.post(self.endpoint, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise GenerationError(f"Content service unreachable: {e}") from e

        if response.status_code >= 400:
            raise GenerationError(
                f"Content service error ({response.status_code}): {response.text[:200]}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise GenerationError("Content service returned invalid JSON") from e

        text = data.get("content") or data.get("text") or ""
        if not text.strip():
            raise GenerationError("Content service returned no content")

        return GeneratedText(text=text.strip(), model=data.get("model"))

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None


class LLMContentService(ContentGenerationService):
    """Generates content directly with an LLM provider."""

    SYSTEM_PROMPT = (
        "You are a content marketing writer. Produce publish-ready {format} content "
        "for {platform}. Return only the content itself."
    )

    def __init__(self, provider: LLMProvider, model: Optional[str] = None):
        self.provider = provider
        self.model = model

    async def generate(self, prompt: str, format_hints: dict) -> GeneratedText:
        system_prompt = self.SYSTEM_PROMPT.format(
            format=format_hints.get("format") or "social",
            platform=format_hints.get("platform") or "social media",
        )
        try:
            response = await self.provider.generate(
                prompt,
                model=self.model,
                system_prompt=system_prompt,
            )
        except Exception as e:
            logger.error(f"LLM generation failed: {e}")
            raise GenerationError(str(e)) from e

        if not response.content or not response.content.strip():
            raise GenerationError("Model returned no content")

        return GeneratedText(
            text=response.content.strip(),
            model=response.model,
            usage=response.usage,
        )
