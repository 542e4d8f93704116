from __future__ import annotations

import colorsys
import hashlib
import math
import re
from typing import Any


_HEX_RE = re.compile(r"^#?([a-f\d]{2})([a-f\d]{2})([a-f\d]{2})([a-f\d]{2})?$", re.I)


def _round_half_up(v: float) -> int:
    # Matches the rounding browsers apply to channel values.
    return int(math.floor(v + 0.5))


def _channel_hex(v: float) -> str:
    return f"{max(0, min(255, _round_half_up(v))):02x}"


def alpha_to_hex(alpha: float) -> str:
    return _channel_hex(float(alpha) * 255.0)


def parse_hex(color: Any, *, to_rgb: bool = False) -> dict[str, Any] | None:
    """
    Split `#rrggbb[aa]` into its parts.

    to_rgb=False -> {"color": "#rrggbb", "opacity": alpha | None}
    to_rgb=True  -> {"r", "g", "b", "opacity"}
    """
    if not isinstance(color, str):
        return None
    m = _HEX_RE.match(color.strip())
    if m is None:
        return None
    r, g, b = (int(part, 16) for part in m.groups()[:3])
    alpha = int(m.group(4), 16) / 255.0 if m.group(4) else None
    if to_rgb:
        return {"r": r, "g": g, "b": b, "opacity": alpha}
    return {"color": "#" + "".join(m.groups()[:3]).lower(), "opacity": alpha}


def hsl_biased_hex(hex6: str) -> str:
    """
    Re-map an arbitrary rgb hex into a readable colour.

    Hue is kept; saturation is squeezed into [0.25, 1] and lightness into [0.25, 0.75].
    """
    r = int(hex6[0:2], 16) / 255.0
    g = int(hex6[2:4], 16) / 255.0
    b = int(hex6[4:6], 16) / 255.0
    h, l, s = colorsys.rgb_to_hls(r, g, b)
    s = 0.75 * s + 0.25
    l = 0.5 * l + 0.25
    r, g, b = colorsys.hls_to_rgb(h, l, s)
    return _channel_hex(r * 255.0) + _channel_hex(g * 255.0) + _channel_hex(b * 255.0)


def seeded_color(seed: str, *, alpha: float | None = None) -> str:
    """
    Deterministic colour for a seed string (same seed, same colour).
    """
    digest = hashlib.sha256(seed.encode("utf-8")).hexdigest()
    out = "#" + hsl_biased_hex(digest[-6:])
    if alpha is not None:
        out += alpha_to_hex(alpha)
    return out


def interpolate_hex(start: str, end: str, t: float) -> str | None:
    """
    Per-channel linear blend between two hex colours; t=0 -> start, t=1 -> end.
    """
    a = parse_hex(start, to_rgb=True)
    b = parse_hex(end, to_rgb=True)
    if a is None or b is None:
        return None
    t = max(0.0, min(1.0, float(t)))
    out = "#" + "".join(
        _channel_hex(a[c] + (b[c] - a[c]) * t) for c in ("r", "g", "b")
    )
    if a["opacity"] is not None and b["opacity"] is not None:
        out += alpha_to_hex(a["opacity"] + (b["opacity"] - a["opacity"]) * t)
    return out
