from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from layers.errors import StyleError
from layers.types import Feature
from style.color import interpolate_hex, parse_hex, seeded_color
from style.expression import evaluate_expression
from style.migrate import normalize_style


FALLBACK_FILL = "#f57c00"
DEFAULT_ALPHA = 0.5


@dataclass(frozen=True)
class StyleDefaults:
    """
    Channel values used when a style has no rule for them (or its rule yields nothing).
    """

    radius: float = 6
    line_width: float = 2
    alpha: float = DEFAULT_ALPHA


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _js_string(v: Any) -> str:
    # Seeds must stay stable across clients: 5.0 -> "5", True -> "true".
    if v is None:
        return ""
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v)


def _strict_equal(a: Any, b: Any) -> bool:
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if _is_number(a) and _is_number(b):
        return a == b
    return type(a) is type(b) and a == b


def target_value(target: Any) -> Any:
    if not isinstance(target, dict):
        return None
    return target.get(target.get("type"))


def _is_color_target(target: Any) -> bool:
    return isinstance(target, dict) and target.get("type") == "color"


def _resolve_range(node: dict[str, Any], properties: dict[str, Any]) -> Any:
    default = node.get("defaultTarget")
    value = evaluate_expression(node.get("expressionObject"), properties)
    points = sorted(
        (p for p in node.get("rangeMap") or [] if _is_number((p or {}).get("value"))),
        key=lambda p: p["value"],
    )
    if not _is_number(value) or not points:
        return target_value(default)

    if value <= points[0]["value"]:
        return target_value(points[0].get("target"))

    gradient = bool(node.get("gradient") or node.get("continuous"))
    for lo, hi in zip(points, points[1:]):
        if value > hi["value"]:
            continue
        lo_t, hi_t = lo.get("target"), hi.get("target")
        span = hi["value"] - lo["value"]
        if span <= 0:
            return target_value(hi_t)
        if gradient and _is_color_target(lo_t) and _is_color_target(hi_t):
            blended = interpolate_hex(
                target_value(lo_t), target_value(hi_t), (value - lo["value"]) / span
            )
            if blended is not None:
                return blended
        # Snap to the nearer transition point; ties go to the lower one.
        if value - lo["value"] <= hi["value"] - value:
            return target_value(lo_t)
        return target_value(hi_t)

    if default is not None:
        return target_value(default)
    return target_value(points[-1].get("target"))


def resolve_target(node: Any, properties: dict[str, Any]) -> Any:
    """
    Resolve one style node (fill, width, radius, ...) for a feature's properties.

    Raises StyleError for an unknown node type; expression failures fall back to the
    node's default target.
    """
    kind = node.get("type") if isinstance(node, dict) else None

    if kind == "constant":
        return target_value(node.get("target"))

    if kind == "seededRandom":
        value = evaluate_expression(node.get("expressionObject"), properties)
        return seeded_color(_js_string(value))

    if kind == "caseMap":
        for case in node.get("caseMap") or []:
            if evaluate_expression((case or {}).get("expressionObject"), properties):
                return target_value(case.get("target"))
        return target_value(node.get("defaultTarget"))

    if kind == "rangeMap":
        return _resolve_range(node, properties)

    if kind == "valueMap":
        value = evaluate_expression(node.get("expressionObject"), properties)
        for entry in node.get("valueMap") or []:
            if _strict_equal(value, (entry or {}).get("value")):
                return target_value(entry.get("target"))
        return target_value(node.get("defaultTarget"))

    if kind == "expression":
        value = evaluate_expression(node.get("expressionObject"), properties)
        if value is None:
            return target_value(node.get("defaultTarget"))
        return value

    raise StyleError(f"Unrecognized style node type: {kind!r}")


def _channel(params: dict[str, Any], name: str, properties: dict[str, Any]) -> Any:
    node = params.get(name)
    if node is None:
        return None
    return resolve_target(node, properties)


def _hex_or(value: Any, fallback: str) -> str:
    parsed = parse_hex(value)
    if parsed is None:
        return fallback
    return parsed["color"]


def _number_or(value: Any, fallback: float) -> float:
    if _is_number(value):
        return value
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            pass
    return fallback


def compile_style(
    feature: Feature,
    style: dict[str, Any],
    options: StyleDefaults | None = None,
) -> dict[str, Any]:
    """
    Compute render attributes for `feature` and store them on `feature.compiled_style`.

    Legacy style documents are normalized first (memoized per style object), so calling
    this repeatedly with the same inputs gives identical output.
    """
    defaults = options or StyleDefaults()
    normalized = normalize_style(style)
    params = normalized.get("parameters") or {}
    props = feature.properties

    fill = _hex_or(_channel(params, "fill", props), FALLBACK_FILL)
    border = _hex_or(_channel(params, "borderColor", props), fill)
    weight = _number_or(_channel(params, "width", props), defaults.line_width)
    radius = _number_or(_channel(params, "radius", props), defaults.radius)
    alpha = _number_or(params.get("alphaMultiplier"), defaults.alpha)

    popup_text = None
    popup_color = None
    pop_over = params.get("popOver")
    if isinstance(pop_over, dict):
        if pop_over.get("text") is not None:
            text = resolve_target(pop_over["text"], props)
            popup_text = "" if text is None else _js_string(text)
        if pop_over.get("color") is not None:
            popup_color = _hex_or(resolve_target(pop_over["color"], props), "#000000")

    attrs = {
        "fillColor": fill,
        "color": border,
        "fillOpacity": alpha,
        "opacity": alpha,
        "weight": weight,
        "radius": radius,
        "popupText": popup_text,
        "popupColor": popup_color,
    }
    feature.compiled_style = attrs
    feature.style_token = id(normalized)
    return attrs
