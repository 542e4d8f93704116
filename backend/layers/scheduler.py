from __future__ import annotations

import asyncio
import inspect
import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from loguru import logger

from client.api import FeatureService
from geo.tiles import Tile, tile_id
from layers.cache import FeatureCache
from layers.options import MAX_PAGE_SIZE, VectorLayerOptions
from layers.types import Feature, parse_feature


# Cache key used for the single paginated stream of "load everything" layers.
ALL_FEATURES_TILE_ID = "all"


@dataclass
class LoadingState:
    """
    Mutable load-loop state owned by one layer.

    `active_step` is resolved exactly once, when the step that created it finishes.
    """

    is_loading: bool = False
    update_lock: bool = False
    missed_call: bool = False
    cancel_requested: bool = False
    pending_timer: asyncio.TimerHandle | None = field(default=None, repr=False)
    active_step: asyncio.Future | None = field(default=None, repr=False)

    def reset(self) -> None:
        # cancel_requested survives; the next public `run` clears it.
        self.is_loading = False
        self.update_lock = False
        self.missed_call = False
        self.active_step = None
        if self.pending_timer is not None:
            self.pending_timer.cancel()
            self.pending_timer = None


@dataclass(frozen=True)
class _TileRequest:
    tile: Tile
    tile_id: str
    page_start: Any | None


def _now_ms() -> int:
    return int(time.time() * 1000)


def _payload_size(raw_features: list[Any]) -> int:
    try:
        return len(json.dumps(raw_features))
    except Exception:
        return 0


class LoadScheduler:
    """
    Incremental, paginated loading for one layer.

    Each step requests the next page for every tile that still has data to give and
    merges it into the cache; `run` keeps stepping on a timer until a step brings
    nothing new, the viewport stops changing, or `cancel` is called.
    """

    def __init__(
        self,
        *,
        cache: FeatureCache,
        service: FeatureService,
        options: VectorLayerOptions,
        base_body: Callable[[], dict[str, Any]],
        clock: Callable[[], int] = _now_ms,
    ):
        self.cache = cache
        self.service = service
        self.options = options
        self.state = LoadingState()
        self.tiles: list[Tile] = []
        self.lod: int | None = None
        self._base_body = base_body
        self._clock = clock
        self._tasks: set[asyncio.Task] = set()
        self._cancellers = 0
        self.closed = False

    @property
    def is_busy(self) -> bool:
        return self.state.is_loading or self.state.pending_timer is not None

    def _debug(self, msg: str) -> None:
        if self.options.debug:
            logger.debug(msg)

    def _parse_features(self, raw_features: list[Any]) -> list[Feature]:
        fmt = self.options.feature_formatter
        out: list[Feature] = []
        dropped = 0
        for raw in raw_features:
            if fmt is not None and isinstance(raw, dict):
                formatted = fmt(raw)
                if isinstance(formatted, dict):
                    raw = formatted
            f = parse_feature(raw)
            if f is None:
                dropped += 1
                continue
            out.append(f)
        if dropped:
            logger.warning(f"Dropped {dropped} malformed feature(s) from response")
        return out

    def _request_body(self) -> dict[str, Any]:
        body = dict(self._base_body())
        body["returnType"] = self.options.return_type
        body["pageSize"] = self.options.page_size
        if self.options.filter:
            body["propertyFilter"] = self.options.filter
        return body

    def eligible_requests(self, tiles: list[Tile], lod: int | None = None) -> list[_TileRequest]:
        """
        Tiles that should be requested this step.

        Untouched tiles always qualify. A touched tile qualifies only while it has a
        cursor and stays within the per-tile feature and byte budgets.
        """
        out: list[_TileRequest] = []
        for t in tiles:
            tid = tile_id(t, lod)
            entry = self.cache.get(tid)
            if entry is None:
                out.append(_TileRequest(tile=t, tile_id=tid, page_start=None))
                continue
            if (
                entry.next_page_start is not None
                and entry.amount <= self.options.max_features_per_tile
                and entry.size <= self.options.max_bytes_per_tile
            ):
                out.append(_TileRequest(tile=t, tile_id=tid, page_start=entry.next_page_start))
        return out

    async def request_step(self, tiles: list[Tile], lod: int | None = None) -> bool:
        """
        One load step over `tiles`. Returns True when anything was cached.

        Requests go out in chunks of `chunk_size`, one chunk at a time. A failure in any
        chunk discards the whole step.
        """
        requests = self.eligible_requests(tiles, lod)
        if not requests:
            return False

        date = self._clock()
        body = self._request_body()
        chunk_size = self.options.chunk_size

        pages: list[tuple[_TileRequest, list[Feature], Any | None, int]] = []
        try:
            for k in range(0, len(requests), chunk_size):
                chunk = requests[k : k + chunk_size]
                tiles_param = []
                for r in chunk:
                    item: dict[str, Any] = {"tileId": r.tile.to_api()}
                    if lod is not None:
                        item["levelOfDetail"] = lod
                    if r.page_start is not None:
                        item["pageStart"] = r.page_start
                    tiles_param.append(item)
                results = await self.service.features_by_tile(
                    {**body, "tiles": tiles_param}, token=self.options.token
                )
                if len(results) != len(chunk):
                    raise ValueError(
                        f"Expected {len(chunk)} tile results, got {len(results)}"
                    )
                for r, res in zip(chunk, results):
                    raw = (res.get("result") or {}).get("features") or []
                    size = res.get("size")
                    if not isinstance(size, (int, float)):
                        size = _payload_size(raw)
                    pages.append(
                        (r, self._parse_features(raw), res.get("nextPageStart") or None, int(size))
                    )
        except Exception as e:
            logger.warning(f"Loading tile features failed: {e!r}")
            return False

        for r, features, cursor, size in pages:
            self.cache.put(r.tile_id, features, cursor, size, date=date, lod=lod)
        return True

    async def request_all_step(self) -> bool:
        """
        Next page of the whole layer, for layers that load everything up front.
        """
        entry = self.cache.get(ALL_FEATURES_TILE_ID)
        if entry is not None and entry.done:
            return False

        body = self._request_body()
        body["pageSize"] = min(MAX_PAGE_SIZE, self.options.page_size)
        if entry is not None:
            body["pageStart"] = entry.next_page_start

        try:
            res = await self.service.list_features(body, token=self.options.token)
            raw = (res.get("result") or {}).get("features") or []
            features = self._parse_features(raw)
            cursor = res.get("nextPageStart") or None
        except Exception as e:
            logger.warning(f"Loading all features failed: {e!r}")
            return False

        self.cache.put(
            ALL_FEATURES_TILE_ID, features, cursor, _payload_size(raw), date=self._clock()
        )
        return True

    async def step(self) -> bool:
        if self.options.load_all:
            return await self.request_all_step()
        return await self.request_step(list(self.tiles), self.lod)

    async def run(self, on_loaded: Callable[[], Any], interval_ms: int | None = None) -> None:
        """
        Start (or nudge) the load loop.

        No-op while a timer is armed; while a step is executing the call is remembered
        and forces one more step afterwards. Ignored once the scheduler is closed or
        while a `cancel` is still waiting for the active step.
        """
        if self.closed or self._cancellers:
            return
        self.state.cancel_requested = False
        await self._run(on_loaded, interval_ms or self.options.interval_ms)

    async def _run(self, on_loaded: Callable[[], Any], interval_ms: int) -> None:
        st = self.state
        if self.closed or st.cancel_requested or st.pending_timer is not None:
            return
        if st.is_loading:
            st.missed_call = True
            return

        st.is_loading = True
        st.missed_call = False
        done = asyncio.get_running_loop().create_future()
        st.active_step = done
        cached = False
        try:
            cached = await self.step()
        finally:
            st.is_loading = False
            st.active_step = None
            if not done.done():
                done.set_result(cached)

        self._debug(f"performed load step, loaded something: {cached}")

        if st.cancel_requested:
            self._debug("load loop cancelled")
            return

        if not cached and not st.missed_call:
            evicted = self.cache.evict_if_over_capacity(self.options.max_tiles_in_cache)
            if evicted:
                self._debug(f"evicted {len(evicted)} tile(s) from cache")
            return

        result = on_loaded()
        if inspect.isawaitable(result):
            await result
        if st.cancel_requested:
            return
        self._arm(on_loaded, interval_ms)

    def _arm(self, on_loaded: Callable[[], Any], interval_ms: int) -> None:
        loop = asyncio.get_running_loop()

        def fire() -> None:
            self.state.pending_timer = None
            task = loop.create_task(self._run(on_loaded, interval_ms))
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

        self.state.pending_timer = loop.call_later(interval_ms / 1000.0, fire)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error("Load loop step crashed")

    async def cancel(self, *, settle: bool = False) -> None:
        """
        Stop the load loop.

        Waits for an executing step to finish; clears a pending timer (and with `settle`
        waits one more interval so an in-flight request cannot race the caller).
        """
        st = self.state
        st.cancel_requested = True
        if st.active_step is not None:
            self._cancellers += 1
            try:
                await asyncio.shield(st.active_step)
            finally:
                self._cancellers -= 1
        if st.pending_timer is not None:
            st.pending_timer.cancel()
            st.pending_timer = None
            if settle:
                await asyncio.sleep(self.options.interval_ms / 1000.0)

    async def close(self) -> None:
        """
        Cancel for good: later `run` calls and already spawned timer tasks do nothing.
        """
        self.closed = True
        await self.cancel()
