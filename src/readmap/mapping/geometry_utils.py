"""Geometry helpers for building map sources."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Tuple, Union

from shapely.geometry import shape

logger = logging.getLogger(__name__)

Anchor = Tuple[float, float]  # (lon, lat) in degrees


def get_centroid(geometry: Dict[str, Any]) -> Anchor:
    """
    Get centroid of a GeoJSON geometry.

    Args:
        geometry: GeoJSON geometry object

    Returns:
        (lon, lat) tuple
    """
    centroid = shape(geometry).centroid
    return (centroid.x, centroid.y)


def round_coordinates(coords: List[float], precision: int = 5) -> List[float]:
    """Round a [lon, lat] pair (5 decimals = ~1m)."""
    return [round(coords[0], precision), round(coords[1], precision)]


def validate_geometry(geometry: Dict[str, Any]) -> bool:
    """
    Validate that a geometry object is usable as an anchor source.

    Args:
        geometry: GeoJSON geometry object

    Returns:
        True if geometry is valid
    """
    if not geometry:
        return False

    geom_type = geometry.get("type")
    coords = geometry.get("coordinates")

    if not geom_type or not coords:
        return False

    if geom_type == "Point":
        return len(coords) >= 2
    elif geom_type == "Polygon":
        return len(coords) > 0 and len(coords[0]) >= 3
    elif geom_type == "MultiPolygon":
        return len(coords) > 0 and len(coords[0]) > 0 and len(coords[0][0]) >= 3

    return False


def point_feature(coordinates: List[float], properties: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": coordinates},
        "properties": properties,
    }


def feature_collection(features: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"type": "FeatureCollection", "features": features}


def anchors_from_geojson(
    collection: Dict[str, Any], iso_property: str = "ADM0_A3"
) -> Dict[str, Anchor]:
    """
    Derive one anchor per country from a polygon FeatureCollection.

    Features without a usable geometry or iso3 property are skipped.
    """
    anchors: Dict[str, Anchor] = {}
    for feature in collection.get("features", []):
        props = feature.get("properties") or {}
        iso = props.get(iso_property) or props.get("iso_a3") or props.get("iso3")
        geom = feature.get("geometry")
        if not iso or not validate_geometry(geom):
            continue
        anchors[str(iso).upper()] = get_centroid(geom)
    return anchors


def names_from_geojson(
    collection: Dict[str, Any], iso_property: str = "ADM0_A3"
) -> Dict[str, str]:
    """iso3 -> display name from country features that carry a name."""
    names: Dict[str, str] = {}
    for feature in collection.get("features", []):
        props = feature.get("properties") or {}
        iso = props.get(iso_property) or props.get("iso_a3") or props.get("iso3")
        name = props.get("name_pt") or props.get("NAME") or props.get("name")
        if iso and name:
            names[str(iso).upper()] = str(name)
    return names


def load_anchors(
    path: Union[str, Path], iso_property: str = "ADM0_A3"
) -> Tuple[Dict[str, Anchor], Dict[str, str]]:
    """
    Load country anchors (and display names, when present) from disk.

    Accepts either ``{"BRA": [lon, lat], ...}`` or a GeoJSON
    FeatureCollection of country polygons (centroids are computed).

    Returns:
        (anchors, names)
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if isinstance(data, dict) and data.get("type") == "FeatureCollection":
        anchors = anchors_from_geojson(data, iso_property)
        names = names_from_geojson(data, iso_property)
    else:
        anchors = {
            str(iso).upper(): (float(coords[0]), float(coords[1]))
            for iso, coords in data.items()
        }
        names = {}

    logger.info(f"Loaded {len(anchors)} country anchors from {path}")
    return anchors, names
