"""Client for the reading-challenge telemetry API and its image proxy."""

import logging
from typing import Any, List, Optional
from urllib.parse import quote

from ..config.settings import ReadMapSettings
from ..models.schemas import Reading, ReadingsResponse, StatsResponse, UserLocationsResponse
from .fetch_client import ResilientFetchClient
from .pollers import DedupingFetcher

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"


def _as_object(body: Any, url: str) -> dict:
    if isinstance(body, dict):
        return body
    logger.warning(f"Unexpected body from {url} ({type(body).__name__}); treating as empty")
    return {}


class TelemetryAPI:
    """Typed access to /stats, /users/locations, /readings/{iso3} and the image proxy."""

    def __init__(
        self,
        fetch_client: ResilientFetchClient,
        base_url: str,
        proxy_url: Optional[str] = None,
        dedupe: Optional[DedupingFetcher] = None,
        image_timeout_s: Optional[float] = None,
    ):
        self.fetch_client = fetch_client
        self.base_url = base_url.rstrip("/")
        self.proxy_endpoint = proxy_url or f"{self.base_url}/proxy-image"
        self.dedupe = dedupe or DedupingFetcher()
        self.image_timeout_s = image_timeout_s

    @classmethod
    def from_settings(cls, settings: ReadMapSettings, client=None) -> "TelemetryAPI":
        headers = {API_KEY_HEADER: settings.API_KEY} if settings.API_KEY else {}
        fetch_client = ResilientFetchClient(
            client=client,
            headers=headers,
            timeout_s=settings.FETCH_TIMEOUT_S,
            max_retries=settings.FETCH_MAX_RETRIES,
            base_delay_s=settings.FETCH_BASE_DELAY_S,
        )
        return cls(
            fetch_client,
            settings.API_URL,
            proxy_url=settings.proxy_url,
            dedupe=DedupingFetcher(settings.DEDUPE_WINDOW_S),
            image_timeout_s=settings.IMAGE_TIMEOUT_S,
        )

    async def aclose(self) -> None:
        await self.fetch_client.aclose()

    # ── Endpoints ────────────────────────────────────────────────────

    async def get_stats(self) -> StatsResponse:
        url = f"{self.base_url}/stats"
        body = await self.dedupe.get(url, lambda: self.fetch_client.fetch_json(url))
        return StatsResponse.model_validate(_as_object(body, url))

    async def get_user_locations(self) -> UserLocationsResponse:
        url = f"{self.base_url}/users/locations"
        body = await self.dedupe.get(url, lambda: self.fetch_client.fetch_json(url))
        return UserLocationsResponse.model_validate(_as_object(body, url))

    async def get_readings(self, iso3: str) -> List[Reading]:
        url = f"{self.base_url}/readings/{quote(iso3)}"
        body = await self.fetch_client.fetch_json(url)
        return ReadingsResponse.model_validate(_as_object(body, url)).readings

    # ── Image proxy ──────────────────────────────────────────────────

    def proxy_url(self, url: str) -> str:
        """Route a third-party image URL through the same-origin proxy."""
        if url.startswith(self.proxy_endpoint):
            return url
        return f"{self.proxy_endpoint}?url={quote(url, safe='')}"

    async def fetch_image(self, url: str) -> bytes:
        """Raw image bytes via the proxy. Not retried; callers fall back instead."""
        return await self.fetch_client.fetch_bytes(
            self.proxy_url(url), timeout_s=self.image_timeout_s, max_retries=0
        )
