from __future__ import annotations

import os


DEFAULT_API_URL = "https://api.ellipsis-drive.com/v1"


def api_url() -> str:
    return (os.getenv("VECTOR_API_URL") or DEFAULT_API_URL).strip().rstrip("/")


def api_timeout_s() -> float:
    raw = (os.getenv("VECTOR_API_TIMEOUT_S") or "").strip()
    if raw:
        try:
            return max(1.0, float(raw))
        except Exception:
            pass
    return 30.0


def default_interval_ms() -> int:
    raw = (os.getenv("VECTOR_LAYER_INTERVAL_MS") or "").strip()
    if raw:
        try:
            return max(10, int(raw))
        except Exception:
            pass
    return 100
