from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from shapely.geometry import shape as shapely_shape

from geo.aoi import BBox


@dataclass(eq=False)
class Feature:
    """
    A loaded vector feature.

    `id` comes from `properties.id` and never changes once the feature is cached.
    `compiled_style` is rewritten in place by the style compiler.
    """

    id: str
    geometry: dict[str, Any]
    properties: dict[str, Any]
    compiled_style: dict[str, Any] | None = None
    # Identity of the normalized style `compiled_style` was computed from.
    style_token: int | None = field(default=None, repr=False)

    def to_geojson(self) -> dict[str, Any]:
        props = dict(self.properties)
        if self.compiled_style is not None:
            props["compiledStyle"] = dict(self.compiled_style)
        return {"type": "Feature", "geometry": self.geometry, "properties": props}


def parse_feature(raw: Any) -> Feature | None:
    """
    Build a Feature from a GeoJSON mapping. Returns None when the id or geometry is unusable.
    """
    if not isinstance(raw, dict):
        return None
    props = raw.get("properties") or {}
    if not isinstance(props, dict):
        return None
    fid = props.get("id", raw.get("id"))
    if fid is None:
        return None
    geom = raw.get("geometry")
    if not isinstance(geom, dict):
        return None
    try:
        shapely_shape(geom)
    except Exception:
        return None
    return Feature(id=str(fid), geometry=geom, properties=props)


@dataclass
class TileCacheEntry:
    """
    Per-tile pagination and accounting state.

    `size` (bytes) and `amount` (features) only grow while the entry lives.
    """

    size: int = 0
    amount: int = 0
    feature_ids: list[str] = field(default_factory=list)
    next_page_start: Any | None = None
    date: int = 0
    done: bool = False
    lod: int | None = None


@dataclass(frozen=True)
class Viewport:
    bounds: BBox
    zoom: float

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Viewport":
        return cls(bounds=BBox.from_bounds(raw["bounds"]), zoom=float(raw["zoom"]))
