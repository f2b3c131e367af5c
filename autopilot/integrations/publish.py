"""
Social publishing service client.

The publisher reports success with a flag and an external post id. A
publish only counts as done when both are present; see
``PublishOutcome.from_response``.

Usage:
    publisher = HTTPPublishService("https://publisher.example.com/post", api_key="...")
    response = await publisher.publish("twitter", "profile-123", text, media_urls)
    outcome = PublishOutcome.from_response(response)
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass
class PublishResponse:
    """Raw answer of the publishing service."""
    success: bool
    external_id: Optional[str] = None
    post_url: Optional[str] = None
    error: Optional[str] = None


class PublishStatus(str, Enum):
    """Result of the publish step of a run."""
    PUBLISHED = "published"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class PublishOutcome:
    """Interpreted result of the publish step."""
    status: PublishStatus
    external_id: Optional[str] = None
    post_url: Optional[str] = None
    error: Optional[str] = None
    reason: Optional[str] = None
    published_at: Optional[datetime] = None

    @classmethod
    def from_response(
        cls,
        response: PublishResponse,
        published_at: Optional[datetime] = None,
    ) -> "PublishOutcome":
        """Published only when the service confirms success and returns an id."""
        if response.success is True and response.external_id:
            return cls(
                status=PublishStatus.PUBLISHED,
                external_id=response.external_id,
                post_url=response.post_url,
                published_at=published_at or datetime.now(timezone.utc),
            )
        error = response.error
        if not error:
            error = "Publisher returned no post id" if response.success else "Publisher reported failure"
        return cls(status=PublishStatus.FAILED, error=error)

    @classmethod
    def skipped(cls, reason: str) -> "PublishOutcome":
        return cls(status=PublishStatus.SKIPPED, reason=reason)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "status": self.status.value,
            "external_id": self.external_id,
            "post_url": self.post_url,
            "error": self.error,
            "reason": self.reason,
            "published_at": self.published_at.isoformat() if self.published_at else None,
        }


class PublishService(ABC):
    """Posts content to a social platform."""

    @abstractmethod
    async def publish(
        self,
        platform: str,
        credential_ref: str,
        text: str,
        media_urls: list[str],
    ) -> PublishResponse:
        pass


class HTTPPublishService(PublishService):
    """Publishing endpoint reached over HTTP."""

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        timeout: float = 60.0,
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

    async def publish(
        self,
        platform: str,
        credential_ref: str,
        text: str,
        media_urls: list[str],
    ) -> PublishResponse:
        """
        Publish content.

        Non-2xx answers become unsuccessful responses carrying the status and
        body; transport errors propagate as ``httpx.HTTPError``.
        """
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        client = await self._get_client()
        response = await client.post(
            self.endpoint,
            json={
                "platform": platform,
                "profileId": credential_ref,
                "content": text,
                "mediaUrls": media_urls,
            },
            headers=headers,
        )

        if response.status_code >= 400:
            logger.warning(f"Publish to {platform} failed with HTTP {response.status_code}")
            return PublishResponse(
                success=False,
                error=f"HTTP {response.status_code}: {response.text[:300]}",
            )

        try:
            data = response.json()
        except ValueError:
            return PublishResponse(success=False, error="Publisher returned invalid JSON")

        return PublishResponse(
            success=data.get("success") is True,
            external_id=data.get("externalId") or data.get("postId") or data.get("id"),
            post_url=data.get("postUrl") or data.get("url"),
            error=data.get("error"),
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
