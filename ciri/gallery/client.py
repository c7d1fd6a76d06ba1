"""
Gallery Client Module

Async client for the pr0gramm item API: tag search plus a cheap
"is this URL still reachable" check for the chosen item.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from ciri.config import GalleryConfig
from ciri.errors import GalleryError

logger = logging.getLogger(__name__)

VIDEO_SUFFIXES = (".webm", ".mp4")


class GalleryItem(BaseModel):
    """One search hit. Unknown API fields are ignored."""
    model_config = ConfigDict(extra="ignore")

    id: int
    image: str
    thumb: str = ""
    created: int = 0
    up: int = 0
    down: int = 0

    @property
    def score(self) -> int:
        return self.up - self.down

    @property
    def is_video(self) -> bool:
        return self.image.endswith(VIDEO_SUFFIXES)

    def url(self, image_host: str, video_host: str) -> str:
        host = video_host if self.is_video else image_host
        return f"{host.rstrip('/')}/{self.image.lstrip('/')}"


class _ItemsResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    items: list[GalleryItem]


class GalleryClient:
    """
    pr0gramm search client.

    Usage:
        async with GalleryClient(config.gallery) as gallery:
            items = await gallery.fetch(["kadse"])
    """

    def __init__(
        self,
        config: Optional[GalleryConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or GalleryConfig()
        self.client = httpx.AsyncClient(
            headers={"User-Agent": "ciri-bot/0.1"},
            timeout=httpx.Timeout(self.config.timeout_seconds),
            follow_redirects=True,
            transport=transport,
        )

    async def fetch(self, tags: Sequence[str]) -> list[GalleryItem]:
        """Search items by tags. Raises GalleryError on HTTP or schema errors."""
        params = {
            "flags": self.config.flags,
            "tags": " ".join(tags),
        }
        if self.config.promoted:
            params["promoted"] = 1

        try:
            response = await self.client.get(self.config.api_url, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise GalleryError(
                f"gallery fetch failed: HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise GalleryError(f"gallery fetch failed: {e}") from e

        try:
            parsed = _ItemsResponse.model_validate_json(response.content)
        except ValidationError as e:
            raise GalleryError(f"gallery parse failed: {e.error_count()} error(s)") from e

        logger.debug(f"Gallery: {len(parsed.items)} items for tags={list(tags)}")
        return parsed.items

    def item_url(self, item: GalleryItem) -> str:
        return item.url(self.config.image_host, self.config.video_host)

    async def is_alive(self, url: str) -> bool:
        """HEAD the URL; any network error or 4xx/5xx counts as dead."""
        try:
            response = await self.client.head(url)
        except httpx.HTTPError as e:
            logger.debug(f"Alive check failed for {url}: {e}")
            return False
        return response.status_code < 400

    async def close(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "GalleryClient":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()
