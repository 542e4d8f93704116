from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from client.api import FeatureService, FeatureServiceClient
from layers.errors import ConfigurationError
from layers.options import VectorLayerOptions
from layers.types import Viewport
from layers.vector_layer import VectorLayer


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield

    registry = get_registry()
    for hosted in list(registry.layers.values()):
        if hosted.layer is not None:
            await hosted.layer.destroy()
    registry.layers.clear()
    if get_service.cache_info().currsize:
        service = get_service()
        if isinstance(service, FeatureServiceClient):
            await service.aclose()
        get_service.cache_clear()
    logger.info("Vector layer host shut down")


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class ApiBounds(BaseModel):
    xMin: float
    xMax: float
    yMin: float
    yMax: float


class ApiViewport(BaseModel):
    bounds: ApiBounds
    zoom: float = Field(ge=0.0, le=30.0)


class ApiCreateLayer(BaseModel):
    pathId: str
    layerId: str
    options: dict[str, Any] = Field(default_factory=dict)


@dataclass
class HostedLayer:
    """
    Server-side stand-in for the browser map widget: it remembers the last viewport
    the client pushed and counts render invalidations.
    """

    layer: VectorLayer | None = None
    viewport: Viewport | None = None
    revision: int = 0

    def get_map_bounds(self) -> Viewport | None:
        return self.viewport

    def invalidate(self) -> None:
        self.revision += 1


@dataclass
class LayerRegistry:
    layers: dict[str, HostedLayer] = field(default_factory=dict)

    def get(self, layer_key: str) -> HostedLayer:
        hosted = self.layers.get(layer_key)
        if hosted is None or hosted.layer is None:
            raise HTTPException(status_code=404, detail=f"Unknown layer: {layer_key}")
        return hosted


@lru_cache(maxsize=1)
def get_service() -> FeatureService:
    return FeatureServiceClient()


@lru_cache(maxsize=1)
def get_registry() -> LayerRegistry:
    return LayerRegistry()


def _info(hosted: HostedLayer) -> dict[str, Any]:
    return {**hosted.layer.get_layer_info(), "revision": hosted.revision}


@app.post("/layers")
async def create_layer(
    body: ApiCreateLayer,
    service: FeatureService = Depends(get_service),
    registry: LayerRegistry = Depends(get_registry),
):
    try:
        options = VectorLayerOptions.model_validate(body.options)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False))

    hosted = HostedLayer()
    try:
        layer = VectorLayer(
            path_id=body.pathId,
            layer_id=body.layerId,
            get_map_bounds=hosted.get_map_bounds,
            update_view=hosted.invalidate,
            service=service,
            options=options,
        )
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    hosted.layer = layer

    previous = registry.layers.get(layer.id)
    if previous is not None and previous.layer is not None:
        await previous.layer.destroy()
    registry.layers[layer.id] = hosted
    return _info(hosted)


@app.post("/layers/{layer_key}/viewport")
async def push_viewport(
    layer_key: str,
    body: ApiViewport,
    registry: LayerRegistry = Depends(get_registry),
):
    hosted = registry.get(layer_key)
    hosted.viewport = Viewport.from_dict(body.model_dump())
    try:
        await hosted.layer.update()
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _info(hosted)


@app.get("/layers/{layer_key}/features")
async def get_features(layer_key: str, registry: LayerRegistry = Depends(get_registry)):
    hosted = registry.get(layer_key)
    try:
        features = hosted.layer.get_features()
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "type": "FeatureCollection",
        "features": [f.to_geojson() for f in features],
        "revision": hosted.revision,
    }


@app.get("/layers/{layer_key}/info")
async def get_layer_info(layer_key: str, registry: LayerRegistry = Depends(get_registry)):
    return _info(registry.get(layer_key))


@app.post("/layers/{layer_key}/clear")
async def clear_layer(layer_key: str, registry: LayerRegistry = Depends(get_registry)):
    hosted = registry.get(layer_key)
    await hosted.layer.clear_layer()
    hosted.invalidate()
    return _info(hosted)


@app.delete("/layers/{layer_key}")
async def delete_layer(layer_key: str, registry: LayerRegistry = Depends(get_registry)):
    hosted = registry.get(layer_key)
    await hosted.layer.destroy()
    registry.layers.pop(layer_key, None)
    return {"deleted": layer_key}
