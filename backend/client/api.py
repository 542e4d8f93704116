from __future__ import annotations

from typing import Any, Protocol

import httpx
from loguru import logger

from config import api_timeout_s, api_url


class ApiError(RuntimeError):
    def __init__(self, status: int, message: str):
        super().__init__(f"API Error {status}: {message}")
        self.status = status
        self.message = message


class FeatureService(Protocol):
    """
    Remote feature service consumed by vector layers.

    - get_info: metadata (timestamps, styles) for a path
    - list_features: one page of every feature in a layer
    - features_by_tile: one page per requested tile, in request order
    """

    async def get_info(self, path_id: str, *, token: str | None = None) -> dict[str, Any]: ...

    async def list_features(
        self, body: dict[str, Any], *, token: str | None = None
    ) -> dict[str, Any]: ...

    async def features_by_tile(
        self, body: dict[str, Any], *, token: str | None = None
    ) -> list[dict[str, Any]]: ...


class FeatureServiceClient(FeatureService):
    """
    httpx-backed FeatureService. Bodies and responses are plain JSON mappings.
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        token: str | None = None,
        timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or api_url()).rstrip("/")
        self.token = token
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout_s or api_timeout_s(),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "FeatureServiceClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    def _headers(self, token: str | None = None) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = token or self.token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def post(self, route: str, body: dict[str, Any], *, token: str | None = None) -> Any:
        resp = await self._client.post(route, json=body, headers=self._headers(token))
        content_type = resp.headers.get("content-type") or ""
        is_json = "application/json" in content_type
        payload: Any = resp.json() if is_json else resp.text

        if resp.status_code == 429:
            logger.warning(f"Rate limited by feature service on {route}")
        if resp.status_code != 200:
            message = payload.get("message") if isinstance(payload, dict) else payload
            raise ApiError(resp.status_code, str(message or resp.reason_phrase))
        return payload

    async def get_info(self, path_id: str, *, token: str | None = None) -> dict[str, Any]:
        return await self.post("/info", {"pathId": path_id}, token=token)

    async def list_features(
        self, body: dict[str, Any], *, token: str | None = None
    ) -> dict[str, Any]:
        return await self.post("/geometry/get", body, token=token)

    async def features_by_tile(
        self, body: dict[str, Any], *, token: str | None = None
    ) -> list[dict[str, Any]]:
        res = await self.post("/geometry/tile", body, token=token)
        if not isinstance(res, list):
            raise ApiError(200, "Expected one result per tile")
        return res
