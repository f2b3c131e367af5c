"""Image generation service client."""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class ImageGenerationError(Exception):
    """Raised when no image could be generated."""


@dataclass
class GeneratedImage:
    """An image produced for an artifact."""
    media_url: str
    prompt: str


class ImageGenerationService(ABC):
    """Turns an image prompt into a hosted image."""

    @abstractmethod
    async def generate(self, prompt: str, style_hints: dict) -> GeneratedImage:
        """
        Generate an image.

        Raises:
            ImageGenerationError: If the service produced no image
        """
        pass


class HTTPImageService(ImageGenerationService):
    """Image generation endpoint reached over HTTP."""

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        timeout: float = 90.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def generate(self, prompt: str, style_hints: dict) -> GeneratedImage:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        client = await self._get_client()
        try:
            response = await client.post(
                self.endpoint,
                json={"prompt": prompt, **style_hints},
                headers=headers,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise ImageGenerationError(f"Image service error: {e}") from e
        except ValueError as e:
            raise ImageGenerationError("Image service returned invalid JSON") from e

        url = data.get("imageUrl") or data.get("image_url") or data.get("url")
        if not url:
            raise ImageGenerationError("Image service returned no image url")

        logger.info(f"Generated image {url}")
        return GeneratedImage(media_url=url, prompt=prompt)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
