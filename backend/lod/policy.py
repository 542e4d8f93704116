from __future__ import annotations

import math


MIN_LOD = 1
MAX_LOD = 6

# Inclusive lower zoom bound at which each LOD (2..6) takes over.
LOD_ZOOM_TRANSITIONS: tuple[int, ...] = (4, 7, 10, 13, 16)


def tile_zoom_for_view_zoom(view_zoom: float, *, max_zoom: int) -> int:
    """
    Zoom used for tile requests: two levels coarser than the view, capped by `max_zoom`.

    Fractional view zooms are floored first so the tile grid stays stable mid-animation.
    """
    z = int(math.floor(float(view_zoom))) - 2
    return max(0, min(int(max_zoom), z))


def lod_for_zoom(zoom: float) -> int:
    lod = MIN_LOD
    for threshold in LOD_ZOOM_TRANSITIONS:
        if float(zoom) >= threshold:
            lod += 1
    return min(MAX_LOD, lod)
