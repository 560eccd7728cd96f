"""Keeps the map renderer in sync with reading progress and user locations."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple

from ..models.schemas import CountryProgress, MonthConfig, UserLocation
from ..orchestrator.request_coordinator import PopupCoordinator
from .color_tiers import (
    COUNTRY_ISO_PROPERTY,
    NEUTRAL_COLOR,
    build_fill_color_expression,
    month_of,
    tier_label,
)
from .geometry_utils import Anchor, feature_collection, point_feature
from .image_loader import BoundedImageLoader, ImageQueueItem, LoaderProgress
from .renderer import MapRenderer
from .ring_layout import RingLayoutConfig, build_marker_geojson, layout_by_country
from .sprites import DEFAULT_SPRITE_SIZE, FALLBACK_COLOR, make_fallback_sprite, sprite_name_for

logger = logging.getLogger(__name__)

COUNTRY_TILES_URL = "https://demotiles.maplibre.org/tiles/tiles.json"
COUNTRY_SOURCE = "countries"
FILL_LAYER = "country-fills"
BORDER_LAYER = "country-borders"
LABELS_SOURCE = "country-labels-source"
LABELS_LAYER = "country-labels-pt"
MARKERS_SOURCE = "user-markers-source"
MARKERS_LAYER = "user-markers"

ERROR_BANNER = "Erro ao carregar dados. Tentando novamente..."


@dataclass
class HoverState:
    """Tooltip content for the hovered country."""

    iso3: str
    name: str
    month_name: str
    progress: int
    tier_label: str
    cursor: Tuple[float, float]


def build_country_labels_geojson(
    anchors: Dict[str, Anchor], names: Optional[Dict[str, str]] = None
) -> Dict[str, Any]:
    """One labelled point per country anchor."""
    names = names or {}
    return feature_collection(
        [
            point_feature([lon, lat], {"iso": iso, "name": names.get(iso, iso)})
            for iso, (lon, lat) in anchors.items()
        ]
    )


def _feature_iso(feature: Dict[str, Any]) -> Optional[str]:
    props = feature.get("properties") or {}
    iso = props.get(COUNTRY_ISO_PROPERTY) or props.get("iso_a3") or props.get("iso3") or props.get("iso")
    return str(iso).upper() if iso else None


class MapSyncController:
    """
    Applies progress colors, user markers and popups to a renderer.

    Nothing is drawn until ``on_layers_ready`` has created the base layers;
    updates that arrive earlier are kept and flushed at that point.
    """

    def __init__(
        self,
        renderer: MapRenderer,
        fetch_image: Callable[[str], Awaitable[bytes]],
        popup: PopupCoordinator,
        anchors: Dict[str, Anchor],
        country_names: Optional[Dict[str, str]] = None,
        palette: Optional[List[MonthConfig]] = None,
        ring_config: Optional[RingLayoutConfig] = None,
        image_concurrency: int = 5,
        image_timeout_s: Optional[float] = 15.0,
        sprite_size: int = DEFAULT_SPRITE_SIZE,
        fallback_color: str = FALLBACK_COLOR,
        neutral_color: str = NEUTRAL_COLOR,
        fill_opacity: float = 0.9,
    ):
        self.renderer = renderer
        self.popup = popup
        self.anchors = anchors
        self.country_names = country_names or {}
        self.palette = palette
        self.ring_config = ring_config or RingLayoutConfig()
        self.sprite_size = sprite_size
        self.fallback_color = fallback_color
        self.neutral_color = neutral_color
        self.fill_opacity = fill_opacity

        self.loader = BoundedImageLoader(
            renderer,
            fetch_image,
            concurrency=image_concurrency,
            sprite_size=sprite_size,
            fallback_color=fallback_color,
            timeout_s=image_timeout_s,
        )

        self.countries: List[CountryProgress] = []
        self.users: List[UserLocation] = []
        self.layers_ready = False
        self.processed_users: Set[str] = set()
        self.hover: Optional[HoverState] = None
        self._errors: Dict[str, str] = {}
        self._subscriptions: List[Tuple[str, str, Callable]] = []

    # ── Lifecycle ────────────────────────────────────────────────────

    def on_layers_ready(self) -> None:
        """Create the base layers (once) and flush any pending state."""
        if self.layers_ready:
            return

        self._create_layers()
        self._subscribe("click", FILL_LAYER, self.handle_click)
        self._subscribe("click", MARKERS_LAYER, self.handle_click)
        self._subscribe("mousemove", FILL_LAYER, self.handle_hover)
        self._subscribe("mouseleave", FILL_LAYER, self.handle_leave)
        self.layers_ready = True
        logger.info("Map layers ready")

        self.apply_country_colors()
        self.apply_markers()

    def reset(self) -> None:
        """Full re-initialization: forget which users already have sprites queued."""
        self.processed_users.clear()
        self.popup.close()
        self.hover = None

    def dispose(self) -> None:
        for event, layer_id, handler in self._subscriptions:
            self.renderer.off(event, layer_id, handler)
        self._subscriptions.clear()
        self.reset()
        self.layers_ready = False

    def _subscribe(self, event: str, layer_id: str, handler: Callable) -> None:
        self.renderer.on(event, layer_id, handler)
        self._subscriptions.append((event, layer_id, handler))

    def _create_layers(self) -> None:
        r = self.renderer

        if not r.has_source(COUNTRY_SOURCE):
            r.add_source(COUNTRY_SOURCE, {"type": "vector", "url": COUNTRY_TILES_URL})
        if not r.has_layer(FILL_LAYER):
            r.add_layer({
                "id": FILL_LAYER,
                "type": "fill",
                "source": COUNTRY_SOURCE,
                "source-layer": "countries",
                "paint": {"fill-color": self.neutral_color, "fill-opacity": self.fill_opacity},
            })
        if not r.has_layer(BORDER_LAYER):
            r.add_layer({
                "id": BORDER_LAYER,
                "type": "line",
                "source": COUNTRY_SOURCE,
                "source-layer": "countries",
                "paint": {"line-color": "#334155", "line-width": 0.5, "line-opacity": 0.3},
            })

        if not r.has_source(LABELS_SOURCE):
            r.add_source(LABELS_SOURCE, {
                "type": "geojson",
                "data": build_country_labels_geojson(self.anchors, self.country_names),
            })
        if not r.has_layer(LABELS_LAYER):
            r.add_layer({
                "id": LABELS_LAYER,
                "type": "symbol",
                "source": LABELS_SOURCE,
                "minzoom": 2,
                "maxzoom": 6,
                "layout": {"text-field": ["get", "name"], "text-allow-overlap": False},
                "paint": {"text-color": "#1f2937", "text-halo-color": "#ffffff", "text-halo-width": 2},
            })

        if not r.has_source(MARKERS_SOURCE):
            r.add_source(MARKERS_SOURCE, {"type": "geojson", "data": feature_collection([])})
        if not r.has_layer(MARKERS_LAYER):
            r.add_layer({
                "id": MARKERS_LAYER,
                "type": "symbol",
                "source": MARKERS_SOURCE,
                "layout": {
                    "icon-image": ["get", "icon"],
                    "icon-size": 0.6,
                    "icon-allow-overlap": True,
                },
            })

    # ── Data updates ─────────────────────────────────────────────────

    def update_progress(self, countries: Sequence[CountryProgress]) -> None:
        self.countries = list(countries)
        self._errors.pop("stats", None)
        self.apply_country_colors()

    def update_users(self, users: Sequence[UserLocation]) -> None:
        self.users = list(users)
        self._errors.pop("users", None)
        self.apply_markers()

    def report_error(self, source: str, error: Exception) -> None:
        """A poller gave up; show the non-blocking banner until it recovers."""
        logger.warning(f"{source} unavailable: {error}")
        self._errors[source] = ERROR_BANNER

    @property
    def banner(self) -> Optional[str]:
        return next(iter(self._errors.values()), None)

    def image_progress(self) -> LoaderProgress:
        return self.loader.progress()

    # ── Rendering ────────────────────────────────────────────────────

    def apply_country_colors(self) -> bool:
        """Recolor every country with a single paint update."""
        if not self.layers_ready:
            return False
        expression = build_fill_color_expression(self.countries, self.palette, self.neutral_color)
        self.renderer.set_paint_property(FILL_LAYER, "fill-color", expression)
        logger.debug(f"Applied colors for {len(self.countries)} countries")
        return True

    def apply_markers(self) -> bool:
        """Rebuild the marker source and queue avatars for users not seen before."""
        if not self.layers_ready:
            return False

        queue: List[ImageQueueItem] = []
        for user in self.users:
            if user.user in self.processed_users:
                continue
            self.processed_users.add(user.user)

            name = sprite_name_for(user.user)
            if not self.renderer.has_sprite(name):
                # visible immediately; replaced when the avatar arrives
                self.renderer.add_sprite(name, make_fallback_sprite(self.sprite_size, self.fallback_color))
            if user.avatar_url:
                queue.append(ImageQueueItem(url=user.avatar_url, sprite_name=name))

        placements = layout_by_country(self.users, self.anchors, self.ring_config)
        self.renderer.set_source_data(
            MARKERS_SOURCE,
            build_marker_geojson(placements, lambda u: sprite_name_for(u.user)),
        )
        logger.debug(f"Rendered {len(placements)} user markers, {len(queue)} new avatar(s) queued")

        if queue:
            self.loader.enqueue(queue)
        return True

    # ── Pointer events ───────────────────────────────────────────────

    def _features_at(self, event: Dict[str, Any], layers: Sequence[str]) -> List[Dict[str, Any]]:
        features = event.get("features")
        if features:
            return features
        point = event.get("point")
        if point is None:
            return []
        return self.renderer.query_features(point, layers)

    def handle_click(self, event: Dict[str, Any]) -> Optional[asyncio.Task]:
        """Open the popup for the clicked country (or marker's country)."""
        for feature in self._features_at(event, [MARKERS_LAYER, FILL_LAYER]):
            iso = _feature_iso(feature)
            if iso:
                logger.debug(f"Opening popup for {iso}")
                return self.popup.open(iso, tuple(event.get("point") or (0.0, 0.0)))
        return None

    def handle_hover(self, event: Dict[str, Any]) -> Optional[HoverState]:
        self.hover = None
        for feature in self._features_at(event, [FILL_LAYER]):
            iso = _feature_iso(feature)
            if not iso:
                continue
            entry = next((c for c in self.countries if c.iso3 == iso), None)
            if entry is None:
                break
            month = month_of(iso, self.palette)
            self.hover = HoverState(
                iso3=iso,
                name=self.country_names.get(iso, iso),
                month_name=month.name if month else "Sem categoria",
                progress=entry.progress,
                tier_label=tier_label(entry.progress),
                cursor=tuple(event.get("point") or (0.0, 0.0)),
            )
            break
        return self.hover

    def handle_leave(self, event: Dict[str, Any]) -> None:
        self.hover = None

    def close_popup(self) -> None:
        self.popup.close()
