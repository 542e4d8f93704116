from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from layers.types import Feature, TileCacheEntry
from lod.policy import MAX_LOD


# Eviction clips at the date of the N-th oldest entry.
EVICTION_CLIP_INDEX = 9


def _slot_index(lod: int | None) -> int:
    return 0 if lod is None else int(lod) - 1


@dataclass
class FeatureCache:
    """
    Features loaded for one layer plus the per-tile bookkeeping that produced them.

    - `_features`: feature id -> variants indexed by LOD-1 (a single slot when not LOD-aware)
    - `_tiles`: tile id -> TileCacheEntry (feature ids, pagination cursor, load date)
    """

    lod_aware: bool = False
    _features: dict[str, list[Feature | None]] = field(default_factory=dict, repr=False)
    _tiles: dict[str, TileCacheEntry] = field(default_factory=dict, repr=False)

    def __len__(self) -> int:
        return len(self._tiles)

    def _new_slot(self) -> list[Feature | None]:
        return [None] * (MAX_LOD if self.lod_aware else 1)

    def _lod(self, lod: int | None) -> int | None:
        return lod if self.lod_aware else None

    def get(self, tile_id: str) -> TileCacheEntry | None:
        return self._tiles.get(tile_id)

    def tile_ids(self) -> list[str]:
        return list(self._tiles.keys())

    def feature(self, feature_id: str, lod: int | None = None) -> Feature | None:
        slot = self._features.get(feature_id)
        if slot is None:
            return None
        return slot[_slot_index(self._lod(lod))]

    def feature_count(self) -> int:
        return sum(1 for slot in self._features.values() for f in slot if f is not None)

    def put(
        self,
        tile_id: str,
        features: Iterable[Feature],
        page_cursor: Any | None,
        byte_size: int,
        *,
        date: int,
        lod: int | None = None,
    ) -> TileCacheEntry:
        """
        Merge one page of results for a tile.

        A feature already cached at this LOD keeps its stored object; only the tile's
        reference to it is added.
        """
        lod = self._lod(lod)
        entry = self._tiles.get(tile_id)
        if entry is None:
            entry = TileCacheEntry(lod=lod)
            self._tiles[tile_id] = entry

        idx = _slot_index(lod)
        seen = set(entry.feature_ids)
        added = 0
        for f in features:
            added += 1
            slot = self._features.get(f.id)
            if slot is None:
                slot = self._new_slot()
                self._features[f.id] = slot
            if slot[idx] is None:
                slot[idx] = f
            if f.id not in seen:
                seen.add(f.id)
                entry.feature_ids.append(f.id)

        entry.amount += added
        entry.size += max(0, int(byte_size or 0))
        entry.next_page_start = page_cursor
        entry.done = page_cursor is None
        entry.date = int(date)
        return entry

    def features_for(self, tile_ids: Iterable[str], lod: int | None = None) -> list[Feature]:
        """
        Features referenced by `tile_ids`, de-duplicated by id in first-seen order.
        """
        idx = _slot_index(self._lod(lod))
        seen: set[str] = set()
        out: list[Feature] = []
        for tid in tile_ids:
            entry = self._tiles.get(tid)
            if entry is None:
                continue
            for fid in entry.feature_ids:
                if fid in seen:
                    continue
                slot = self._features.get(fid)
                f = slot[idx] if slot is not None else None
                if f is None:
                    continue
                seen.add(fid)
                out.append(f)
        return out

    def all_features(self, lod: int | None = None) -> list[Feature]:
        idx = _slot_index(self._lod(lod))
        return [slot[idx] for slot in self._features.values() if slot[idx] is not None]

    def evict_if_over_capacity(self, max_tiles: int) -> list[str]:
        """
        Drop whole load generations once more than `max_tiles` tiles are cached.

        The clip threshold is the 10th-oldest entry date; every entry at or before it
        goes, so the number of evicted tiles depends on how generations are shared.
        Features no tile references anymore (at that LOD) are dropped as well.
        """
        if len(self._tiles) <= int(max_tiles):
            return []

        dates = sorted(entry.date for entry in self._tiles.values())
        clip = dates[min(EVICTION_CLIP_INDEX, len(dates) - 1)]
        evicted = [tid for tid, entry in self._tiles.items() if entry.date <= clip]
        for tid in evicted:
            del self._tiles[tid]

        self._drop_unreferenced()
        return evicted

    def _drop_unreferenced(self) -> None:
        referenced: set[tuple[str, int]] = set()
        for entry in self._tiles.values():
            idx = _slot_index(entry.lod)
            for fid in entry.feature_ids:
                referenced.add((fid, idx))

        for fid in list(self._features.keys()):
            slot = self._features[fid]
            for idx, f in enumerate(slot):
                if f is not None and (fid, idx) not in referenced:
                    slot[idx] = None
            if all(f is None for f in slot):
                del self._features[fid]

    def clear(self) -> None:
        self._features.clear()
        self._tiles.clear()
