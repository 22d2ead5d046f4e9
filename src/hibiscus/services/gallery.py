"""Gallery persistence collaborators.

The generation pipeline treats persistence as best effort: a failed save is
logged and the asset is still delivered.
"""

import base64
import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import httpx
import structlog

from hibiscus.models.stats import UsageStats

logger = structlog.get_logger(__name__)

_PROBE_TIMEOUT = 2.0
_REQUEST_TIMEOUT = 30.0


class Gallery(Protocol):
    async def save(
        self, kind: str, prompt: str, params: dict[str, Any], content: bytes
    ) -> Optional[dict[str, Any]]: ...

    async def remove(self, item_id: str) -> bool: ...

    async def list_items(self) -> list[dict[str, Any]]: ...

    async def update_stats(self, stats: UsageStats) -> bool: ...


class GalleryClient:
    """HTTP client for the local gallery server."""

    def __init__(
        self,
        base_url: str = "http://localhost:3333",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize gallery client.

        Args:
            base_url: Gallery server root URL
            transport: Custom transport (tests pass ``httpx.MockTransport``)
        """
        self.base_url = base_url.rstrip("/")
        self.available = False
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(_REQUEST_TIMEOUT, connect=_PROBE_TIMEOUT),
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def check_connection(self) -> bool:
        """Probe the server; every other call is skipped while unavailable."""
        try:
            response = await self._client.get("/api/stats", timeout=_PROBE_TIMEOUT)
            self.available = response.is_success
        except httpx.HTTPError:
            self.available = False
        logger.info("gallery.connection", available=self.available, url=self.base_url)
        return self.available

    async def list_items(self) -> list[dict[str, Any]]:
        if not self.available:
            return []
        try:
            response = await self._client.get("/api/gallery")
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("gallery.list_failed", error=str(e), error_type=type(e).__name__)
            return []

    async def save(
        self, kind: str, prompt: str, params: dict[str, Any], content: bytes
    ) -> Optional[dict[str, Any]]:
        """Upload an asset (base64 in JSON). Returns the stored item or None."""
        if not self.available:
            return None
        body = {
            "type": kind,
            "prompt": prompt,
            "params": params,
            "blob": base64.b64encode(content).decode("ascii"),
        }
        try:
            response = await self._client.post("/api/gallery", json=body)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("gallery.save_failed", error=str(e), error_type=type(e).__name__)
            return None

    async def remove(self, item_id: str) -> bool:
        if not self.available:
            return False
        try:
            response = await self._client.delete(f"/api/gallery/{item_id}")
            return response.is_success
        except httpx.HTTPError as e:
            logger.error("gallery.remove_failed", item_id=item_id, error=str(e))
            return False

    async def update_stats(self, stats: UsageStats) -> bool:
        if not self.available:
            return False
        try:
            response = await self._client.post("/api/stats", json=stats.model_dump())
            return response.is_success
        except httpx.HTTPError as e:
            logger.error("gallery.stats_failed", error=str(e))
            return False


class InMemoryGallery:
    """Process-local gallery used when the server is unreachable."""

    def __init__(self) -> None:
        self.items: dict[str, dict[str, Any]] = {}
        self.contents: dict[str, bytes] = {}
        self.stats = UsageStats()

    async def save(
        self, kind: str, prompt: str, params: dict[str, Any], content: bytes
    ) -> Optional[dict[str, Any]]:
        item_id = uuid.uuid4().hex
        item = {
            "id": item_id,
            "type": kind,
            "prompt": prompt,
            "params": dict(params),
            "date": datetime.now(timezone.utc).isoformat(),
            "size": len(content),
        }
        self.items[item_id] = item
        self.contents[item_id] = content
        return item

    async def remove(self, item_id: str) -> bool:
        self.contents.pop(item_id, None)
        return self.items.pop(item_id, None) is not None

    async def list_items(self) -> list[dict[str, Any]]:
        return list(self.items.values())

    async def update_stats(self, stats: UsageStats) -> bool:
        self.stats = stats.model_copy()
        return True
