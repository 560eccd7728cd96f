# src/readmap/orchestrator/dashboard.py
import asyncio
import logging
from typing import Dict, List, Optional

from ..config.settings import ReadMapSettings, get_settings
from ..mapping.geometry_utils import Anchor
from ..mapping.map_sync import MapSyncController
from ..mapping.renderer import MapRenderer
from ..mapping.ring_layout import RingLayoutConfig
from ..models.schemas import MonthConfig, StatsResponse, UserLocationsResponse
from ..services.pollers import Poller
from ..services.telemetry_api import TelemetryAPI
from .request_coordinator import PopupCoordinator

logger = logging.getLogger(__name__)


class DashboardOrchestrator:
    """
    Wires the telemetry pollers to the map controller.

    Two independent pollers (aggregate stats, user locations) feed the
    controller; a click on the map goes through the popup coordinator to
    the per-country readings endpoint.
    """

    def __init__(
        self,
        renderer: MapRenderer,
        anchors: Dict[str, Anchor],
        country_names: Optional[Dict[str, str]] = None,
        api: Optional[TelemetryAPI] = None,
        settings: Optional[ReadMapSettings] = None,
        palette: Optional[List[MonthConfig]] = None,
    ):
        self.settings = settings or get_settings()
        self.api = api or TelemetryAPI.from_settings(self.settings)
        self.renderer = renderer
        self.focused = True

        self.popup = PopupCoordinator(self.api.get_readings, country_names)
        self.controller = MapSyncController(
            renderer,
            self.api.fetch_image,
            self.popup,
            anchors,
            country_names=country_names,
            palette=palette,
            ring_config=RingLayoutConfig(
                base_radius=self.settings.RING_BASE_RADIUS,
                increment=self.settings.RING_INCREMENT,
                min_spacing=self.settings.RING_MIN_SPACING,
            ),
            image_concurrency=self.settings.IMAGE_CONCURRENCY,
            image_timeout_s=self.settings.IMAGE_TIMEOUT_S,
            sprite_size=self.settings.SPRITE_SIZE,
            fallback_color=self.settings.FALLBACK_SPRITE_COLOR,
            neutral_color=self.settings.NEUTRAL_COLOR,
            fill_opacity=self.settings.FILL_OPACITY,
        )

        self.stats_poller: Poller[StatsResponse] = Poller(
            "stats",
            self.api.get_stats,
            self._on_stats,
            lambda e: self.controller.report_error("stats", e),
            interval_s=self.settings.STATS_POLL_INTERVAL_S,
            is_active=self._stats_active,
        )
        self.users_poller: Poller[UserLocationsResponse] = Poller(
            "users",
            self.api.get_user_locations,
            self._on_users,
            lambda e: self.controller.report_error("users", e),
            interval_s=self.settings.USERS_POLL_INTERVAL_S,
        )

    def _stats_active(self) -> bool:
        return self.focused or not self.settings.PAUSE_STATS_WHEN_UNFOCUSED

    def _on_stats(self, stats: StatsResponse) -> None:
        logger.info(f"📊 {len(stats.countries)} countries in progress ({stats.total} total)")
        self.controller.update_progress(stats.countries)

    def _on_users(self, users: UserLocationsResponse) -> None:
        logger.info(f"👥 {len(users.users)} user locations ({users.total} total)")
        self.controller.update_users(users.users)

    def set_focus(self, focused: bool) -> None:
        """Page focus changed; stats polling pauses while unfocused."""
        self.focused = focused

    async def poll_once(self) -> None:
        """One round of both pollers, then wait for queued avatars."""
        self.controller.on_layers_ready()
        await asyncio.gather(self.stats_poller.poll_once(), self.users_poller.poll_once())
        await self.controller.loader.wait_idle()

    def start(self) -> None:
        self.controller.on_layers_ready()
        self.stats_poller.start()
        self.users_poller.start()

    async def stop(self) -> None:
        await self.stats_poller.stop()
        await self.users_poller.stop()
        self.controller.dispose()
        await self.api.aclose()
