"""Renderer boundary and a headless renderer that snapshots map state to disk."""

import json
import logging
import math
import re
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from PIL import Image

logger = logging.getLogger(__name__)

PointerHandler = Callable[[Dict[str, Any]], None]


class MapRenderer(Protocol):
    """Capabilities the sync controller needs from a map renderer."""

    def has_sprite(self, name: str) -> bool: ...

    def add_sprite(self, name: str, image: Image.Image) -> None:
        """Register a sprite, replacing any existing one with the same name."""
        ...

    def has_layer(self, layer_id: str) -> bool: ...

    def add_layer(self, layer: Dict[str, Any]) -> None: ...

    def has_source(self, source_id: str) -> bool: ...

    def add_source(self, source_id: str, source: Dict[str, Any]) -> None: ...

    def set_source_data(self, source_id: str, data: Dict[str, Any]) -> None: ...

    def set_paint_property(self, layer_id: str, name: str, value: Any) -> None: ...

    def query_features(
        self, point: Tuple[float, float], layers: Optional[Sequence[str]] = None
    ) -> List[Dict[str, Any]]: ...

    def on(self, event: str, layer_id: str, handler: PointerHandler) -> None: ...

    def off(self, event: str, layer_id: str, handler: PointerHandler) -> None: ...


class SnapshotRenderer:
    """
    In-memory renderer that can write its state to a directory.

    There is no screen: a "screen point" is read as map coordinates, and
    query_features returns the Point features of a layer's GeoJSON source
    lying within ``hit_radius`` of it. Country fill layers carry no
    geometry here, so clicks on them resolve through their marker/label
    points.
    """

    def __init__(self, output_dir: Optional[str] = None, hit_radius: float = 0.5):
        self.output_dir = Path(output_dir) if output_dir else None
        self.hit_radius = hit_radius
        self.sprites: Dict[str, Image.Image] = {}
        self.layers: Dict[str, Dict[str, Any]] = {}
        self.sources: Dict[str, Dict[str, Any]] = {}
        self.paint: Dict[str, Dict[str, Any]] = {}
        self.handlers: Dict[Tuple[str, str], List[PointerHandler]] = {}
        self.paint_updates = 0

    # ── Sprites ──────────────────────────────────────────────────────

    def has_sprite(self, name: str) -> bool:
        return name in self.sprites

    def add_sprite(self, name: str, image: Image.Image) -> None:
        self.sprites[name] = image

    # ── Layers and sources ───────────────────────────────────────────

    def has_layer(self, layer_id: str) -> bool:
        return layer_id in self.layers

    def add_layer(self, layer: Dict[str, Any]) -> None:
        if layer["id"] in self.layers:
            raise ValueError(f"Layer {layer['id']} already exists")
        self.layers[layer["id"]] = layer
        self.paint[layer["id"]] = dict(layer.get("paint", {}))

    def has_source(self, source_id: str) -> bool:
        return source_id in self.sources

    def add_source(self, source_id: str, source: Dict[str, Any]) -> None:
        if source_id in self.sources:
            raise ValueError(f"Source {source_id} already exists")
        self.sources[source_id] = dict(source)

    def set_source_data(self, source_id: str, data: Dict[str, Any]) -> None:
        if source_id not in self.sources:
            raise KeyError(f"Unknown source {source_id}")
        self.sources[source_id]["data"] = data

    def set_paint_property(self, layer_id: str, name: str, value: Any) -> None:
        if layer_id not in self.layers:
            raise KeyError(f"Unknown layer {layer_id}")
        self.paint[layer_id][name] = value
        self.paint_updates += 1

    # ── Pointer events ───────────────────────────────────────────────

    def query_features(
        self, point: Tuple[float, float], layers: Optional[Sequence[str]] = None
    ) -> List[Dict[str, Any]]:
        hits = []
        for layer_id in layers or list(self.layers):
            layer = self.layers.get(layer_id)
            if not layer:
                continue
            data = self.sources.get(layer.get("source", ""), {}).get("data") or {}
            for feature in data.get("features", []):
                geom = feature.get("geometry") or {}
                if geom.get("type") != "Point":
                    continue
                lon, lat = geom["coordinates"][:2]
                if math.hypot(lon - point[0], lat - point[1]) <= self.hit_radius:
                    hits.append({**feature, "layer": layer_id})
        return hits

    def on(self, event: str, layer_id: str, handler: PointerHandler) -> None:
        self.handlers.setdefault((event, layer_id), []).append(handler)

    def off(self, event: str, layer_id: str, handler: PointerHandler) -> None:
        handlers = self.handlers.get((event, layer_id), [])
        if handler in handlers:
            handlers.remove(handler)

    def fire(self, event: str, layer_id: str, point: Tuple[float, float]) -> int:
        """Dispatch a pointer event at a point; returns the handler count."""
        payload = {"point": point, "features": self.query_features(point, [layer_id])}
        handlers = list(self.handlers.get((event, layer_id), []))
        for handler in handlers:
            handler(payload)
        return len(handlers)

    # ── Snapshot ─────────────────────────────────────────────────────

    def save(self, output_dir: Optional[str] = None) -> Path:
        """
        Write sources, layer paint and sprites.

        Layout:
            <dir>/sources/<source>.geojson
            <dir>/paint.json
            <dir>/sprites/<name>.png
        """
        target = Path(output_dir) if output_dir else self.output_dir
        if target is None:
            raise ValueError("No output directory configured for snapshot")

        (target / "sources").mkdir(parents=True, exist_ok=True)
        (target / "sprites").mkdir(parents=True, exist_ok=True)

        for source_id, source in self.sources.items():
            if "data" not in source:
                continue
            with open(target / "sources" / f"{source_id}.geojson", "w", encoding="utf-8") as f:
                json.dump(source["data"], f, ensure_ascii=False)

        with open(target / "paint.json", "w", encoding="utf-8") as f:
            json.dump(self.paint, f, indent=2, ensure_ascii=False)

        for name, image in self.sprites.items():
            safe_name = re.sub(r"[^\w.-]", "_", name)
            image.save(target / "sprites" / f"{safe_name}.png", format="PNG")

        logger.info(
            f"Snapshot saved to {target}: {len(self.sources)} sources, {len(self.sprites)} sprites"
        )
        return target
