from __future__ import annotations

from layers.cache import FeatureCache
from layers.types import Feature


def feat(fid):
    return Feature(id=fid, geometry={"type": "Point", "coordinates": [0, 0]}, properties={"id": fid})


def test_put_accumulates_monotonically():
    cache = FeatureCache()
    cache.put("5_1_1", [feat("a"), feat("b")], "c1", 200, date=1)
    e1 = cache.get("5_1_1")
    amount1, size1 = e1.amount, e1.size
    assert e1.next_page_start == "c1"
    assert e1.done is False

    cache.put("5_1_1", [feat("c")], None, 50, date=2)
    e2 = cache.get("5_1_1")
    assert e2.amount >= amount1 and e2.size >= size1
    assert (e2.amount, e2.size) == (3, 250)
    assert e2.feature_ids == ["a", "b", "c"]
    assert e2.done is True
    assert e2.date == 2


def test_absent_keys_are_empty_not_errors():
    cache = FeatureCache()
    assert cache.get("nope") is None
    assert cache.features_for(["nope"]) == []
    assert cache.evict_if_over_capacity(10) == []


def test_features_for_dedupes_in_first_seen_order():
    cache = FeatureCache()
    cache.put("t1", [feat("a"), feat("b")], None, 1, date=1)
    cache.put("t2", [feat("b"), feat("c")], None, 1, date=1)
    assert [f.id for f in cache.features_for(["t2", "t1"])] == ["b", "c", "a"]


def test_cached_feature_identity_is_kept():
    cache = FeatureCache()
    first = feat("a")
    cache.put("t1", [first], None, 1, date=1)
    cache.put("t2", [feat("a")], None, 1, date=2)
    assert cache.features_for(["t2"])[0] is first


def test_lod_slices_are_independent():
    cache = FeatureCache(lod_aware=True)
    coarse, fine = feat("a"), feat("a")
    cache.put("3_1_1_1", [coarse], None, 1, date=1, lod=1)
    cache.put("9_1_1_4", [fine], None, 1, date=2, lod=4)
    assert cache.features_for(["3_1_1_1"], lod=1) == [coarse]
    assert cache.features_for(["9_1_1_4"], lod=4) == [fine]
    assert cache.features_for(["9_1_1_4"], lod=1) == []
    assert cache.all_features(lod=4) == [fine]
    assert cache.all_features(lod=2) == []
    assert cache.feature_count() == 2


def test_eviction_removes_whole_generations():
    cache = FeatureCache()
    # 50 tiles from one early load step, then 451 later ones with distinct dates.
    for i in range(50):
        cache.put(f"old_{i}", [feat(f"o{i}")], None, 1, date=1)
    for i in range(451):
        cache.put(f"new_{i}", [feat(f"n{i}")], None, 1, date=100 + i)
    assert len(cache) == 501

    evicted = cache.evict_if_over_capacity(500)
    assert len(evicted) == 50
    assert all(tid.startswith("old_") for tid in evicted)
    assert len(cache) == 451


def test_eviction_clips_at_tenth_oldest_date():
    cache = FeatureCache()
    for i in range(501):
        cache.put(f"t{i}", [feat(f"f{i}")], None, 1, date=i)
    evicted = cache.evict_if_over_capacity(500)
    assert sorted(evicted) == sorted(f"t{i}" for i in range(10))
    assert len(cache) == 491


def test_no_eviction_at_or_below_capacity():
    cache = FeatureCache()
    for i in range(5):
        cache.put(f"t{i}", [feat(f"f{i}")], None, 1, date=i)
    assert cache.evict_if_over_capacity(5) == []
    assert len(cache) == 5


def test_small_cache_eviction_uses_newest_date_as_clip():
    cache = FeatureCache()
    for i in range(4):
        cache.put(f"t{i}", [feat(f"f{i}")], None, 1, date=i)
    assert len(cache.evict_if_over_capacity(2)) == 4
    assert len(cache) == 0
    assert cache.feature_count() == 0


def test_eviction_drops_unreachable_features_only():
    cache = FeatureCache(lod_aware=True)
    shared = feat("shared")
    cache.put("old", [feat("gone"), shared], None, 1, date=1, lod=2)
    cache.put("new", [shared], None, 1, date=100, lod=2)
    cache.put("old_other_lod", [feat("shared")], None, 1, date=1, lod=5)
    for i in range(10):
        cache.put(f"filler_{i}", [feat(f"x{i}")], None, 1, date=50 + i, lod=2)

    cache.evict_if_over_capacity(5)
    assert cache.get("old") is None
    assert cache.get("old_other_lod") is None
    assert cache.feature("gone", lod=2) is None
    assert cache.feature("shared", lod=2) is shared
    assert cache.feature("shared", lod=5) is None

    referenced = {(fid, cache.get(tid).lod) for tid in cache.tile_ids() for fid in cache.get(tid).feature_ids}
    for fid, lod in referenced:
        assert cache.feature(fid, lod=lod) is not None
    assert cache.feature_count() == len(referenced)
