from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any


# Envelope the tile indexer works in; tighter than the Web-Mercator limit on purpose.
MAX_LON = 180.0
MAX_LAT = 85.0


@dataclass(frozen=True)
class BBox:
    """
    WGS84 bounding box in lon/lat degrees.

    The host widget reports bounds as xMin/xMax/yMin/yMax; use `from_bounds` for that shape.
    """

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    @classmethod
    def from_bounds(cls, bounds: dict[str, Any]) -> "BBox":
        return cls(
            min_lon=float(bounds["xMin"]),
            min_lat=float(bounds["yMin"]),
            max_lon=float(bounds["xMax"]),
            max_lat=float(bounds["yMax"]),
        )

    def is_finite(self) -> bool:
        return all(
            math.isfinite(v)
            for v in (self.min_lon, self.min_lat, self.max_lon, self.max_lat)
        )

    def clipped(self) -> "BBox | None":
        """
        Clip to the valid envelope. Returns None for an empty or malformed box.
        """
        if not self.is_finite():
            return None
        min_lon = max(self.min_lon, -MAX_LON)
        max_lon = min(self.max_lon, MAX_LON)
        min_lat = max(self.min_lat, -MAX_LAT)
        max_lat = min(self.max_lat, MAX_LAT)
        if min_lon > max_lon or min_lat > max_lat:
            return None
        return BBox(min_lon=min_lon, min_lat=min_lat, max_lon=max_lon, max_lat=max_lat)

    def to_bounds(self) -> dict[str, float]:
        return {
            "xMin": self.min_lon,
            "xMax": self.max_lon,
            "yMin": self.min_lat,
            "yMax": self.max_lat,
        }
