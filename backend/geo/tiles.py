from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from geo.aoi import BBox


@dataclass(frozen=True)
class Tile:
    zoom: int
    x: int
    y: int

    def to_api(self) -> dict[str, int]:
        return {"zoom": self.zoom, "tileX": self.x, "tileY": self.y}


def tile_id(tile: Tile, lod: int | None = None) -> str:
    """
    Cache key for a tile; LOD-aware layers keep one entry per (tile, lod).
    """
    base = f"{tile.zoom}_{tile.x}_{tile.y}"
    if lod is None:
        return base
    return f"{base}_{int(lod)}"


def lonlat_to_tile(zoom: int, lon: float, lat: float) -> tuple[int, int]:
    """
    Convert lon/lat in EPSG:4326 to slippy tile (x, y) at zoom.
    """
    z = int(zoom)
    n = 2**z

    lon = float(lon)
    lat_rad = math.radians(float(lat))

    x = int(math.floor((lon + 180.0) / 360.0 * n))
    y = int(
        math.floor(
            (1.0 - math.log(math.tan(lat_rad) + (1.0 / math.cos(lat_rad))) / math.pi)
            / 2.0
            * n
        )
    )
    x = max(0, min(n - 1, x))
    y = max(0, min(n - 1, y))
    return x, y


def tile_bbox_4326(zoom: int, x: int, y: int) -> BBox:
    """
    Slippy tile (z/x/y) bounds as a WGS84 lon/lat bbox.
    """
    z = int(zoom)
    n = 2**z

    lon_left = x / n * 360.0 - 180.0
    lon_right = (x + 1) / n * 360.0 - 180.0

    def lat_from_tile_y(tile_y: int) -> float:
        # https://wiki.openstreetmap.org/wiki/Slippy_map_tilenames
        t = math.pi * (1.0 - 2.0 * tile_y / n)
        return math.degrees(math.atan(math.sinh(t)))

    return BBox(
        min_lon=lon_left,
        min_lat=lat_from_tile_y(y + 1),
        max_lon=lon_right,
        max_lat=lat_from_tile_y(y),
    )


def bounds_to_tiles(bounds: BBox | dict[str, Any], zoom: int) -> list[Tile]:
    """
    Tiles covering `bounds` at `zoom`, plus a one-tile halo used as prefetch margin.

    Bounds are clipped to lon [-180, 180] / lat [-85, 85]; malformed input yields no tiles.
    Order is deterministic (x-major).
    """
    try:
        box = bounds if isinstance(bounds, BBox) else BBox.from_bounds(bounds)
        z = int(zoom)
    except (KeyError, TypeError, ValueError):
        return []
    if z < 0:
        return []
    clip = box.clipped()
    if clip is None:
        return []

    n = 2**z
    x0, y0 = lonlat_to_tile(z, clip.min_lon, clip.max_lat)  # top-left
    x1, y1 = lonlat_to_tile(z, clip.max_lon, clip.min_lat)  # bottom-right

    min_x = max(0, min(x0, x1) - 1)
    max_x = min(n - 1, max(x0, x1) + 1)
    min_y = max(0, min(y0, y1) - 1)
    max_y = min(n - 1, max(y0, y1) + 1)

    out: list[Tile] = []
    for x in range(min_x, max_x + 1):
        for y in range(min_y, max_y + 1):
            out.append(Tile(zoom=z, x=x, y=y))
    return out


def tiles_above(tile: Tile) -> list[Tile]:
    """
    The tile itself followed by each coarser ancestor down to zoom 0.
    """
    out: list[Tile] = []
    for z in range(tile.zoom, -1, -1):
        scale = 2 ** (tile.zoom - z)
        out.append(Tile(zoom=z, x=tile.x // scale, y=tile.y // scale))
    return out


def tiles_extent(tiles: list[Tile]) -> BBox | None:
    """
    Lon/lat envelope of `tiles` (halo included); None for an empty list.
    """
    boxes = [tile_bbox_4326(t.zoom, t.x, t.y) for t in tiles]
    if not boxes:
        return None
    return BBox(
        min_lon=min(b.min_lon for b in boxes),
        min_lat=min(b.min_lat for b in boxes),
        max_lon=max(b.max_lon for b in boxes),
        max_lat=max(b.max_lat for b in boxes),
    )
