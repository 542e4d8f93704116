from __future__ import annotations

import math

from geo.aoi import BBox
from geo.tiles import (
    Tile,
    bounds_to_tiles,
    lonlat_to_tile,
    tile_bbox_4326,
    tile_id,
    tiles_above,
    tiles_extent,
)


def test_bounds_to_tiles_includes_center_and_halo():
    tiles = bounds_to_tiles({"xMin": 0, "xMax": 1, "yMin": 0, "yMax": 1}, 5)
    coords = {(t.x, t.y) for t in tiles}

    assert Tile(zoom=5, x=16, y=15) in tiles
    for dx in (-1, 0, 1):
        for dy in (-1, 0, 1):
            assert (16 + dx, 15 + dy) in coords
    # lat 0 sits exactly on the row boundary, so the envelope spans rows 15-16.
    assert coords == {(x, y) for x in range(15, 18) for y in range(14, 18)}
    assert all(t.zoom == 5 for t in tiles)


def test_bounds_to_tiles_clamps_at_world_edges():
    tiles = bounds_to_tiles(BBox(min_lon=-200, min_lat=-90, max_lon=200, max_lat=90), 2)
    coords = {(t.x, t.y) for t in tiles}
    assert coords == {(x, y) for x in range(4) for y in range(4)}

    corner = bounds_to_tiles({"xMin": -180, "xMax": -179.9, "yMin": 84.9, "yMax": 85}, 4)
    for t in corner:
        assert 0 <= t.x <= 15
        assert 0 <= t.y <= 15
    assert {(t.x, t.y) for t in corner} == {(0, 0), (0, 1), (1, 0), (1, 1)}


def test_bounds_to_tiles_is_deterministic_and_unique():
    b = {"xMin": 14.2, "xMax": 14.7, "yMin": 49.9, "yMax": 50.2}
    a = bounds_to_tiles(b, 10)
    assert a == bounds_to_tiles(b, 10)
    assert len(a) == len(set(a))


def test_bounds_to_tiles_covers_envelope_at_many_zooms():
    box = BBox(min_lon=-3.5, min_lat=40.1, max_lon=2.25, max_lat=48.9)
    for z in range(0, 12):
        tiles = set(bounds_to_tiles(box, z))
        n = 2**z
        for t in tiles:
            assert 0 <= t.x <= n - 1 and 0 <= t.y <= n - 1
        for lon, lat in [(box.min_lon, box.min_lat), (box.max_lon, box.max_lat), (0.0, 45.0)]:
            x, y = lonlat_to_tile(z, lon, lat)
            for dx in (-1, 0, 1):
                for dy in (-1, 0, 1):
                    cx, cy = x + dx, y + dy
                    if 0 <= cx < n and 0 <= cy < n:
                        assert Tile(zoom=z, x=cx, y=cy) in tiles


def test_bounds_to_tiles_malformed_input_is_empty():
    assert bounds_to_tiles({"xMin": math.nan, "xMax": 1, "yMin": 0, "yMax": 1}, 5) == []
    assert bounds_to_tiles({"xMin": 10, "xMax": 1, "yMin": 0, "yMax": 1}, 5) == []
    assert bounds_to_tiles({"xMin": 0}, 5) == []
    assert bounds_to_tiles({"xMin": 0, "xMax": 1, "yMin": 86, "yMax": 89}, 5) == []


def test_tile_bbox_contains_point():
    z = 12
    lon, lat = 14.4378, 50.0755
    x, y = lonlat_to_tile(z, lon, lat)
    tb = tile_bbox_4326(z, x, y)
    assert tb.min_lon <= lon <= tb.max_lon
    assert tb.min_lat <= lat <= tb.max_lat


def test_tiles_above_walks_to_zoom_zero():
    chain = tiles_above(Tile(zoom=5, x=16, y=15))
    assert chain[0] == Tile(zoom=5, x=16, y=15)
    assert chain[1] == Tile(zoom=4, x=8, y=7)
    assert chain[-1] == Tile(zoom=0, x=0, y=0)
    assert [t.zoom for t in chain] == [5, 4, 3, 2, 1, 0]


def test_tile_id_with_and_without_lod():
    t = Tile(zoom=3, x=1, y=2)
    assert tile_id(t) == "3_1_2"
    assert tile_id(t, 4) == "3_1_2_4"


def test_tiles_extent_unions_tile_boxes():
    assert tiles_extent([]) is None
    ext = tiles_extent([Tile(1, 0, 0), Tile(1, 1, 1)])
    assert ext.min_lon == -180.0 and ext.max_lon == 180.0
    assert ext.min_lat < -85.0 and ext.max_lat > 85.0
    assert ext.to_bounds() == {
        "xMin": ext.min_lon,
        "xMax": ext.max_lon,
        "yMin": ext.min_lat,
        "yMax": ext.max_lat,
    }
