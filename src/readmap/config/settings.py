# src/readmap/config/settings.py
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# .env is at repo root ~/readmap/.env
# This file: ~/readmap/src/readmap/config/settings.py (4 levels deep)
_ENV_FILE = Path(__file__).parent.parent.parent.parent / ".env"


class ReadMapSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=_ENV_FILE, extra="ignore")

    # Backend telemetry API
    API_URL: str = Field(default="/api", description="Base URL of the telemetry API")
    API_KEY: str | None = Field(
        default=None, description="Sent as X-API-Key when set; absent means anonymous access"
    )
    IMAGE_PROXY_URL: str | None = Field(
        default=None, description="Image proxy endpoint; defaults to {API_URL}/proxy-image"
    )

    # Fetch policy
    FETCH_TIMEOUT_S: float = 10.0
    FETCH_MAX_RETRIES: int = 3  # retries after the first attempt
    FETCH_BASE_DELAY_S: float = 1.0  # 1s, 2s, 4s ...

    # Polling
    STATS_POLL_INTERVAL_S: float = 60.0
    USERS_POLL_INTERVAL_S: float = 60.0
    DEDUPE_WINDOW_S: float = 10.0  # same resource within this window is not refetched
    PAUSE_STATS_WHEN_UNFOCUSED: bool = True

    # Avatar sprites
    IMAGE_CONCURRENCY: int = 5  # hard cap on in-flight image loads
    IMAGE_TIMEOUT_S: float = 15.0
    SPRITE_SIZE: int = Field(default=48, description="Square sprite edge in pixels")
    FALLBACK_SPRITE_COLOR: str = "#D1D5DB"

    # Ring layout (degrees, planar approximation)
    RING_BASE_RADIUS: float = 1.2
    RING_INCREMENT: float = 0.9
    RING_MIN_SPACING: float = 0.35

    # Map colors
    NEUTRAL_COLOR: str = "#F5F5F5"
    FILL_OPACITY: float = 0.9

    # Headless runner
    ANCHORS_PATH: str | None = Field(
        default=None, description="JSON of iso3 -> [lon, lat] or a country polygon FeatureCollection"
    )
    SNAPSHOT_DIR: str = Field(
        default="map_snapshots",
        description="Where SnapshotRenderer writes sources, paint and sprites (relative to the working directory)",
    )

    @property
    def proxy_url(self) -> str:
        return self.IMAGE_PROXY_URL or f"{self.API_URL.rstrip('/')}/proxy-image"


settings = ReadMapSettings()


def get_settings() -> ReadMapSettings:
    """Get the settings instance."""
    return settings
