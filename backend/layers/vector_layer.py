from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Union

from loguru import logger

from client.api import FeatureService
from geo.tiles import Tile, bounds_to_tiles, tile_id, tiles_above, tiles_extent
from layers.cache import FeatureCache
from layers.errors import ConfigurationError
from layers.options import VectorLayerOptions
from layers.scheduler import ALL_FEATURES_TILE_ID, LoadScheduler, LoadingState
from layers.types import Feature, Viewport
from lod.policy import lod_for_zoom, tile_zoom_for_view_zoom
from style.compiler import StyleDefaults, compile_style
from style.migrate import normalize_style


ViewportLike = Union[Viewport, dict[str, Any], None]
MapBoundsGetter = Callable[[], Union[ViewportLike, Awaitable[ViewportLike]]]

DEFAULT_STYLE: dict[str, Any] = {"method": "v2", "parameters": {}}


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class VectorLayer:
    """
    A remote vector layer rendered into a host map.

    The host supplies `get_map_bounds` (pulled once per `update`) and `update_view`
    (called whenever new data or a LOD change warrants a redraw).
    """

    def __init__(
        self,
        *,
        path_id: str,
        layer_id: str,
        get_map_bounds: MapBoundsGetter,
        update_view: Callable[[], Any],
        service: FeatureService,
        options: VectorLayerOptions | None = None,
        clock: Callable[[], int] | None = None,
    ):
        if not path_id:
            raise ConfigurationError("no path id specified")
        if not layer_id:
            raise ConfigurationError("no layer id specified")
        if get_map_bounds is None:
            raise ConfigurationError("no getMapBounds method specified")
        if update_view is None:
            raise ConfigurationError("no view updater specified")

        self.options = options or VectorLayerOptions()
        self.id = f"{path_id}_{layer_id}"
        self.path_id = path_id
        self.layer_id = layer_id
        self.get_map_bounds = get_map_bounds
        self.update_view = update_view
        self.service = service

        self.info: dict[str, Any] | None = None
        self.timestamp_id: str | None = self.options.timestamp_id
        self.style_id: str | None = self.options.style_id
        self.style: dict[str, Any] | None = self.options.style
        # Style document sent inline with requests instead of a style id.
        self._inline_style: dict[str, Any] | None = self.options.style
        self.destroyed = False

        self.tiles: list[Tile] = []
        self.zoom = 1
        self.lod: int | None = None

        self.cache = FeatureCache(lod_aware=self.options.dynamic_lod)
        scheduler_kwargs: dict[str, Any] = {}
        if clock is not None:
            scheduler_kwargs["clock"] = clock
        self.scheduler = LoadScheduler(
            cache=self.cache,
            service=service,
            options=self.options,
            base_body=self._base_body,
            **scheduler_kwargs,
        )
        self._style_defaults = StyleDefaults(
            radius=self.options.radius, line_width=self.options.line_width
        )

    @property
    def state(self) -> LoadingState:
        return self.scheduler.state

    def _base_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "pathId": self.path_id,
            "layerId": self.layer_id,
            "timestampId": self.timestamp_id,
        }
        if self._inline_style is not None:
            body["style"] = self._inline_style
        elif self.style_id:
            body["styleId"] = self.style_id
        return body

    def _apply_info(self, info: dict[str, Any]) -> None:
        """
        Resolve timestamp and style from path metadata.

        Explicitly requested ids that the metadata does not know are configuration errors.
        """
        vector = (info or {}).get("vector") or {}
        timestamps = [t for t in vector.get("timestamps") or [] if isinstance(t, dict)]
        styles = [s for s in vector.get("styles") or [] if isinstance(s, dict)]

        wanted_ts = self.options.timestamp_id
        if wanted_ts:
            if timestamps and not any(t.get("id") == wanted_ts for t in timestamps):
                raise ConfigurationError(f"timestamp {wanted_ts} not found for {self.path_id}")
            self.timestamp_id = wanted_ts
        else:
            active = [t for t in timestamps if t.get("status", "active") == "active"]
            pick = (active or timestamps or [None])[-1]
            self.timestamp_id = pick.get("id") if pick else None

        if self.options.style is not None:
            self.style = self.options.style
        elif self.options.style_id:
            match = next((s for s in styles if s.get("id") == self.options.style_id), None)
            if match is None:
                raise ConfigurationError(
                    f"style {self.options.style_id} not found for {self.path_id}"
                )
            self.style = match
        else:
            default = next((s for s in styles if s.get("default")), None)
            self.style = default or (styles[0] if styles else DEFAULT_STYLE)
            self.style_id = self.style.get("id")

    async def _fetch_info(self) -> bool:
        st = self.state
        st.update_lock = True
        try:
            info = await self.service.get_info(self.path_id, token=self.options.token)
            self._apply_info(info)
            self.info = info
            return True
        except ConfigurationError:
            raise
        except Exception as e:
            logger.warning(f"Fetching metadata for {self.path_id} failed: {e!r}")
            return False
        finally:
            st.update_lock = False

    async def _notify(self) -> None:
        await _maybe_await(self.update_view())

    async def update(self) -> None:
        """
        Pull the viewport, recompute tiles and LOD, and drive the load loop.

        Overlapping calls are dropped while metadata is being fetched or while a step is
        in flight for the same tile set.
        """
        st = self.state
        if self.destroyed or st.update_lock:
            return
        if self.info is None and not await self._fetch_info():
            return

        raw = await _maybe_await(self.get_map_bounds())
        if raw is None:
            return
        if isinstance(raw, Viewport):
            viewport = raw
        else:
            try:
                viewport = Viewport.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Ignoring malformed viewport for {self.id}: {e!r}")
                return

        self.zoom = tile_zoom_for_view_zoom(viewport.zoom, max_zoom=self.options.max_zoom)
        lod_changed = False
        if self.options.dynamic_lod:
            lod = lod_for_zoom(self.zoom)
            lod_changed = self.lod is not None and lod != self.lod
            self.lod = lod

        tiles = bounds_to_tiles(viewport.bounds, self.zoom)
        changed = lod_changed or tiles != self.tiles
        self.tiles = tiles
        self.scheduler.tiles = tiles
        self.scheduler.lod = self.lod

        if lod_changed:
            # Re-render at the new density before any new data arrives.
            await self._notify()

        if st.is_loading and not changed:
            return
        await self.scheduler.run(self._notify)

    def _stacked_features(self) -> list[Feature]:
        seen: set[str] = set()
        out: list[Feature] = []
        for t in self.tiles:
            for anc in tiles_above(t):
                lod = lod_for_zoom(anc.zoom) if self.options.dynamic_lod else None
                tid = tile_id(anc, lod)
                entry = self.cache.get(tid)
                if entry is None or not entry.feature_ids:
                    continue
                for f in self.cache.features_for([tid], lod):
                    if f.id not in seen:
                        seen.add(f.id)
                        out.append(f)
                break
        return out

    def get_features(self) -> list[Feature]:
        """
        Styled features for the current view (or everything, for load-all layers).
        """
        if self.options.load_all:
            features = self.cache.features_for([ALL_FEATURES_TILE_ID])
        elif self.options.stack_lod_tiles:
            features = self._stacked_features()
        else:
            features = self.cache.features_for(
                [tile_id(t, self.lod) for t in self.tiles], self.lod
            )

        style = self.style or DEFAULT_STYLE
        token = id(normalize_style(style))
        for f in features:
            if f.compiled_style is None or f.style_token != token:
                compile_style(f, style, self._style_defaults)
        return features

    def set_style(self, style: dict[str, Any], *, style_id: str | None = None) -> None:
        """
        Swap the layer style. Styles without an id are sent inline with later requests.
        """
        self.style = style
        self.style_id = style_id or style.get("id")
        self._inline_style = None if self.style_id else style

    def get_layer_info(self) -> dict[str, Any]:
        st = self.state
        extent = tiles_extent(self.tiles)
        return {
            "id": self.id,
            "pathId": self.path_id,
            "layerId": self.layer_id,
            "timestampId": self.timestamp_id,
            "styleId": self.style_id,
            "metadataLoaded": self.info is not None,
            "zoom": self.zoom,
            "levelOfDetail": self.lod,
            "tiles": len(self.tiles),
            "extent": extent.to_bounds() if extent is not None else None,
            "cachedTiles": len(self.cache),
            "cachedFeatures": self.cache.feature_count(),
            "isLoading": st.is_loading,
            "loadAll": self.options.load_all,
        }

    async def clear_layer(self) -> None:
        """
        Stop loading and forget everything cached. Metadata is kept.
        """
        st = self.state
        st.update_lock = True
        try:
            await self.scheduler.cancel()
            self.cache.clear()
            self.tiles = []
            self.scheduler.tiles = []
            self.lod = None
            self.scheduler.lod = None
        finally:
            st.reset()

    async def destroy(self) -> None:
        """
        Stop loading for good. Later `update` calls are ignored.
        """
        self.destroyed = True
        st = self.state
        st.update_lock = True
        try:
            await self.scheduler.close()
        finally:
            st.update_lock = False
