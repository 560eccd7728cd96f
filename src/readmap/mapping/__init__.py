"""Reading map rendering preparation.

Tier colors for country progress, ring layout for user markers, bounded
avatar sprite loading, and the controller that applies all of it to a
map renderer.
"""

from .color_tiers import (
    NEUTRAL_COLOR,
    TIER_LABELS,
    tier_of,
    tier_label,
    color_of,
    month_of,
    build_fill_color_expression,
)
from .ring_layout import (
    RingLayoutConfig,
    Ring,
    MarkerPlacement,
    compute_rings,
    layout,
    layout_by_country,
    build_marker_geojson,
)
from .image_loader import BoundedImageLoader, ImageQueueItem, LoaderProgress, LoadResult
from .sprites import render_circular_avatar, make_fallback_sprite, sprite_name_for
from .renderer import MapRenderer, SnapshotRenderer
from .map_sync import MapSyncController, HoverState, build_country_labels_geojson
from .geometry_utils import get_centroid, load_anchors, anchors_from_geojson

__all__ = [
    "NEUTRAL_COLOR",
    "TIER_LABELS",
    "tier_of",
    "tier_label",
    "color_of",
    "month_of",
    "build_fill_color_expression",
    "RingLayoutConfig",
    "Ring",
    "MarkerPlacement",
    "compute_rings",
    "layout",
    "layout_by_country",
    "build_marker_geojson",
    "BoundedImageLoader",
    "ImageQueueItem",
    "LoaderProgress",
    "LoadResult",
    "render_circular_avatar",
    "make_fallback_sprite",
    "sprite_name_for",
    "MapRenderer",
    "SnapshotRenderer",
    "MapSyncController",
    "HoverState",
    "build_country_labels_geojson",
    "get_centroid",
    "load_anchors",
    "anchors_from_geojson",
]
