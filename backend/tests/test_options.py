from __future__ import annotations

import pydantic
import pytest

from config import api_timeout_s, api_url, default_interval_ms
from layers.options import MAX_PAGE_SIZE, VectorLayerOptions, load_options
from layers.types import parse_feature


def test_defaults():
    opts = VectorLayerOptions()
    assert opts.page_size == 25
    assert opts.max_tiles_in_cache == 500
    assert opts.max_features_per_tile == 500
    assert opts.max_bytes_per_tile == 16_000_000
    assert opts.chunk_size == 10
    assert opts.return_type == "geometry"
    assert VectorLayerOptions(center_points=True).return_type == "center"


def test_page_size_is_capped_and_validated():
    assert VectorLayerOptions(page_size=10_000).page_size == MAX_PAGE_SIZE
    with pytest.raises(pydantic.ValidationError):
        VectorLayerOptions(page_size=0)


def test_load_options_from_yaml(tmp_path):
    p = tmp_path / "layer.yaml"
    p.write_text("dynamic_lod: true\nmax_zoom: 14\nstyle_id: roads\nunknown_key: 1\n", encoding="utf-8")
    opts = load_options(p)
    assert opts.dynamic_lod is True
    assert opts.max_zoom == 14
    assert opts.style_id == "roads"

    bad = tmp_path / "bad.yaml"
    bad.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_options(bad)


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("VECTOR_API_URL", "http://localhost:9000/api/")
    monkeypatch.setenv("VECTOR_API_TIMEOUT_S", "0.2")
    monkeypatch.setenv("VECTOR_LAYER_INTERVAL_MS", "not-a-number")
    assert api_url() == "http://localhost:9000/api"
    assert api_timeout_s() == 1.0
    assert default_interval_ms() == 100

    monkeypatch.setenv("VECTOR_LAYER_INTERVAL_MS", "250")
    assert VectorLayerOptions().interval_ms == 250


def test_parse_feature_validates_geometry():
    good = {"type": "Feature", "geometry": {"type": "Point", "coordinates": [14.4, 50.1]}, "properties": {"id": "a"}}
    f = parse_feature(good)
    assert f.id == "a"
    assert f.geometry["coordinates"] == [14.4, 50.1]

    assert parse_feature({"id": 7, "geometry": {"type": "Point", "coordinates": [0, 0]}}).id == "7"
    assert parse_feature({"properties": {}, "geometry": {"type": "Point", "coordinates": [0, 0]}}) is None
    assert parse_feature({"properties": {"id": "x"}, "geometry": {"type": "Blob"}}) is None
    assert parse_feature("nope") is None
