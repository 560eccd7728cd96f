"""Concentric ring layout for user markers around a country anchor.

Markers are packed greedily, innermost ring first. Each ring holds as many
markers as fit at ``min_spacing`` arc distance along its circumference.

Offsets are applied in plain degrees around the anchor. There is no
latitude-dependent longitude correction, so rings look horizontally
squeezed at high latitudes. This is a known limitation of the layout.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..models.schemas import UserLocation
from .geometry_utils import Anchor, feature_collection, point_feature, round_coordinates

logger = logging.getLogger(__name__)

TWO_PI = 2 * math.pi


@dataclass(frozen=True)
class RingLayoutConfig:
    """Ring geometry in the anchor's coordinate units (degrees)."""

    base_radius: float = 1.2
    increment: float = 0.9
    min_spacing: float = 0.35

    def __post_init__(self):
        if self.base_radius <= 0 or self.increment <= 0 or self.min_spacing <= 0:
            raise ValueError(
                f"Ring layout values must be positive (base_radius={self.base_radius}, "
                f"increment={self.increment}, min_spacing={self.min_spacing})"
            )

    def capacity(self, radius: float) -> int:
        """Markers that fit on a ring of this radius (at least one)."""
        return max(1, math.floor(TWO_PI * radius / self.min_spacing))


@dataclass
class Ring:
    """One ring of markers around an anchor."""

    radius: float
    members: List[Any] = field(default_factory=list)

    @property
    def angular_step(self) -> float:
        return TWO_PI / len(self.members) if self.members else TWO_PI


@dataclass
class MarkerPlacement:
    """Final position of one user's marker."""

    position: List[float]  # [lon, lat]
    user: Any
    ring: int
    index: int


def compute_rings(users: Sequence[Any], config: Optional[RingLayoutConfig] = None) -> List[Ring]:
    """
    Split users into rings, innermost first.

    Args:
        users: Ordered users (any objects)
        config: Ring geometry

    Returns:
        Rings in order of increasing radius; member counts sum to len(users)
    """
    config = config or RingLayoutConfig()
    rings: List[Ring] = []
    radius = config.base_radius
    placed = 0

    while placed < len(users):
        take = min(config.capacity(radius), len(users) - placed)
        rings.append(Ring(radius=radius, members=list(users[placed:placed + take])))
        placed += take
        radius += config.increment

    return rings


def layout(
    anchor: Anchor,
    users: Sequence[Any],
    config: Optional[RingLayoutConfig] = None,
) -> List[MarkerPlacement]:
    """
    Place markers for every user around an anchor.

    Within a ring the i-th member sits at angle ``i * 2π / ring_size``,
    starting at angle 0 (due east of the anchor).

    Args:
        anchor: (lon, lat) of the country
        users: Ordered users; the same order always yields the same layout
        config: Ring geometry

    Returns:
        One placement per user, in input order
    """
    lon, lat = anchor
    placements: List[MarkerPlacement] = []

    for ring_idx, ring in enumerate(compute_rings(users, config)):
        step = ring.angular_step
        for idx, user in enumerate(ring.members):
            angle = idx * step
            placements.append(
                MarkerPlacement(
                    position=[
                        lon + ring.radius * math.cos(angle),
                        lat + ring.radius * math.sin(angle),
                    ],
                    user=user,
                    ring=ring_idx,
                    index=idx,
                )
            )

    return placements


def layout_by_country(
    users: Sequence[UserLocation],
    anchors: Dict[str, Anchor],
    config: Optional[RingLayoutConfig] = None,
) -> List[MarkerPlacement]:
    """
    Group users by country and lay each group out around its anchor.

    Users keep their relative input order within a country. Users whose
    country has no anchor cannot be positioned and are skipped.
    """
    groups: Dict[str, List[UserLocation]] = {}
    for user in users:
        groups.setdefault(user.iso3, []).append(user)

    placements: List[MarkerPlacement] = []
    for iso3, members in groups.items():
        anchor = anchors.get(iso3)
        if anchor is None:
            logger.warning(f"No anchor for {iso3}; skipping {len(members)} user marker(s)")
            continue
        placements.extend(layout(anchor, members, config))

    return placements


def build_marker_geojson(
    placements: Sequence[MarkerPlacement],
    sprite_for: Callable[[UserLocation], str],
) -> Dict[str, Any]:
    """GeoJSON FeatureCollection of user markers, one Point per placement."""
    features = []
    for placement in placements:
        user = placement.user
        features.append(
            point_feature(
                round_coordinates(placement.position),
                {
                    "user": user.user,
                    "iso3": user.iso3,
                    "book": user.book or "",
                    "icon": sprite_for(user),
                    "ring": placement.ring,
                },
            )
        )
    return feature_collection(features)
