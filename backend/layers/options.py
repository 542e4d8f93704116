from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from config import default_interval_ms


MAX_PAGE_SIZE = 3000


class VectorLayerOptions(BaseModel):
    """
    Tunables for one vector layer.

    Defaults mirror what the hosted map widgets ship with; every field can be overridden
    per layer (constructor kwargs, JSON body or YAML file).
    """

    model_config = ConfigDict(extra="ignore", arbitrary_types_allowed=True)

    center_points: bool = False
    max_zoom: int = Field(default=21, ge=0, le=30)
    page_size: int = Field(default=25, ge=1)
    max_mb_per_tile: float = Field(default=16, gt=0)
    max_tiles_in_cache: int = Field(default=500, ge=1)
    max_features_per_tile: int = Field(default=500, ge=1)
    radius: float = 6
    line_width: float = 2
    load_all: bool = False
    chunk_size: int = Field(default=10, ge=1)
    interval_ms: int = Field(default_factory=default_interval_ms, ge=1)

    # LOD-aware layers request and cache one variant per level of detail.
    dynamic_lod: bool = False
    # Let a tile that is still loading show features cached for a coarser ancestor.
    stack_lod_tiles: bool = False

    style_id: str | None = None
    style: dict[str, Any] | None = None
    timestamp_id: str | None = None
    filter: list[dict[str, Any]] | None = None
    token: str | None = None
    debug: bool = False

    # Called on every raw feature mapping before it is cached.
    feature_formatter: Callable[[dict[str, Any]], Any] | None = Field(
        default=None, exclude=True
    )

    @field_validator("page_size")
    @classmethod
    def _cap_page_size(cls, v: int) -> int:
        return min(MAX_PAGE_SIZE, int(v))

    @property
    def max_bytes_per_tile(self) -> int:
        return int(self.max_mb_per_tile * 1_000_000)

    @property
    def return_type(self) -> str:
        return "center" if self.center_points else "geometry"


def load_options(path: Path) -> VectorLayerOptions:
    raw = path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid layer options yaml root: {path}")
    return VectorLayerOptions.model_validate(data)
