import asyncio
import sys
from pathlib import Path

import pytest


# Ensure `backend/` is on sys.path so tests can import local modules
# like `layers.*`, `geo.*`, and `main`.
BACKEND_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_ROOT))


def make_feature(fid, lon=0.0, lat=0.0, **props):
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": [lon, lat]},
        "properties": {"id": fid, **props},
    }


DEFAULT_INFO = {
    "vector": {
        "timestamps": [
            {"id": "ts-old", "status": "active"},
            {"id": "ts-new", "status": "active"},
            {"id": "ts-pending", "status": "created"},
        ],
        "styles": [
            {
                "id": "style-a",
                "default": True,
                "method": "v2",
                "parameters": {
                    "fill": {"type": "constant", "target": {"type": "color", "color": "#112233"}},
                    "alphaMultiplier": 0.8,
                },
            },
            {
                "id": "style-b",
                "method": "singleColor",
                "parameters": {"color": "#00ff00", "alpha": 0.4, "width": 3},
            },
        ],
    }
}


class FakeService:
    """
    In-memory FeatureService.

    Every tile yields one feature per page, `pages_per_tile` pages in total.
    Set `gate` to an asyncio.Event to hold tile requests until it is set.
    """

    def __init__(self, *, info=None, pages_per_tile=1, all_pages=2):
        self.info = DEFAULT_INFO if info is None else info
        self.pages_per_tile = pages_per_tile
        self.all_pages = all_pages
        self.info_calls = 0
        self.tile_calls = []
        self.tokens = []
        self.list_calls = []
        self.gate = None
        self.fail = False

    async def get_info(self, path_id, token=None):
        self.info_calls += 1
        return self.info

    def tile_result(self, item):
        t = item["tileId"]
        page = int(item.get("pageStart") or 0)
        fid = f"{t['zoom']}_{t['tileX']}_{t['tileY']}_p{page}"
        if "levelOfDetail" in item:
            fid += f"_l{item['levelOfDetail']}"
        cursor = page + 1 if page + 1 < self.pages_per_tile else None
        return {
            "size": 100,
            "result": {"features": [make_feature(fid, value=page)]},
            "nextPageStart": cursor,
        }

    async def features_by_tile(self, body, token=None):
        self.tile_calls.append(body)
        self.tokens.append(token)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise RuntimeError("service unavailable")
        return [self.tile_result(item) for item in body["tiles"]]

    async def list_features(self, body, token=None):
        self.list_calls.append(body)
        if self.fail:
            raise RuntimeError("service unavailable")
        page = int(body.get("pageStart") or 0)
        cursor = page + 1 if page + 1 < self.all_pages else None
        return {
            "result": {"features": [make_feature(f"all-{page}-{i}") for i in range(3)]},
            "nextPageStart": cursor,
        }


@pytest.fixture
def service():
    return FakeService()


@pytest.fixture
def run():
    return asyncio.run


async def settle(scheduler):
    """
    Wait until the load loop has no step running, no timer armed and no task pending.
    """
    for _ in range(1000):
        await asyncio.sleep(0.002)
        if not scheduler.is_busy and not scheduler._tasks:
            return
    raise AssertionError("load loop did not settle")
