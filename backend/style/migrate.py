from __future__ import annotations

import copy
from typing import Any


CURRENT_METHOD = "v2"

LEGACY_METHODS = {
    "rules",
    "transitionPoints",
    "random",
    "singleColor",
    "fromColorProperty",
    "classToColor",
    "formula",
}

_normalized_cache: dict[int, tuple[dict[str, Any], dict[str, Any]]] = {}
_MAX_CACHED_STYLES = 256


def _bounded_cache_put(cache: dict, key, value, *, max_items: int) -> None:
    cache[key] = value
    if len(cache) > max_items:
        try:
            oldest = next(iter(cache.keys()))
            if oldest != key:
                cache.pop(oldest, None)
        except Exception:
            pass


def _property_expression(properties: list[Any], expression: str = "property1") -> dict[str, Any]:
    return {"properties": list(properties), "values": [], "expression": expression}


def _rule_target(rule: dict[str, Any]) -> dict[str, Any] | None:
    for kind in ("color", "pattern", "icon"):
        if rule.get(kind):
            return {"type": kind, kind: rule[kind]}
    return None


def _migrate_channels(params: dict[str, Any]) -> None:
    if "alpha" in params:
        params["alphaMultiplier"] = params.pop("alpha")

    if params.get("borderColor") is not None:
        params["borderColor"] = {
            "type": "constant",
            "target": {"type": "color", "color": params["borderColor"]},
        }

    altitude = params.pop("altitude", None)
    if altitude:
        params["elevation"] = {
            "type": "expression",
            "defaultTarget": {"type": "number", "number": 0},
            "expressionObject": _property_expression([altitude.get("property")]),
        }

    if "width" in params and not isinstance(params["width"], dict):
        params["width"] = {
            "type": "constant",
            "target": {"type": "number", "number": params["width"]},
        }

    radius = params.get("radius")
    if isinstance(radius, dict) and "method" in radius:
        radius_params = radius.get("parameters") or {}
        if radius.get("method") == "onProperty":
            params["radius"] = {
                "type": "expression",
                "defaultTarget": {"type": "number", "number": 10},
                "expressionObject": _property_expression([radius_params.get("property")]),
            }
        else:
            value = radius_params.get("value", 10)
            params["radius"] = {
                "type": "expression",
                "defaultTarget": {"type": "number", "number": value},
                "expressionObject": {"properties": [], "values": [], "expression": str(value)},
            }

    popup = params.pop("popupProperty", None)
    if popup:
        text_color = params.pop("textColor", None) or "#000000"
        params["popOver"] = {
            "color": {"type": "constant", "target": {"type": "color", "color": text_color}},
            "text": {
                "type": "expression",
                "defaultTarget": {"type": "string", "string": ""},
                "expressionObject": _property_expression([popup]),
            },
        }


def _default_target(params: dict[str, Any]) -> dict[str, Any] | None:
    target = None
    default_color = params.pop("defaultColor", None)
    if default_color:
        target = {"type": "color", "color": default_color}
    default_icon = params.pop("defaultIcon", None)
    if params.get("icon"):
        target = {"type": "icon", "icon": default_icon}
    params.pop("defaultPattern", None)
    if params.get("pattern"):
        target = {"type": "pattern", "pattern": params["pattern"]}
    return target


def _range_map(points: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [{"value": p.get("value"), "target": _rule_target(p)} for p in points or []]


def _migrate_fill(method: str, params: dict[str, Any]) -> None:
    default_target = _default_target(params)

    if method == "singleColor":
        for kind in ("color", "pattern", "icon"):
            if params.get(kind):
                params["fill"] = {
                    "type": "constant",
                    "target": {"type": kind, kind: params.pop(kind)},
                }
                break
    elif method == "fromColorProperty":
        params["fill"] = {
            "type": "expression",
            "defaultTarget": default_target,
            "expressionObject": _property_expression(["color"]),
        }
    elif method == "rules":
        case_map = []
        for rule in params.pop("rules", None) or []:
            op = rule.get("operator") or "=="
            if op == "=":
                op = "=="
            case_map.append(
                {
                    "target": _rule_target(rule),
                    "expressionObject": {
                        "properties": [rule.get("property")],
                        "values": [rule.get("value")],
                        "expression": f"property1 {op} value1",
                    },
                }
            )
        params["fill"] = {
            "type": "caseMap",
            "defaultTarget": default_target,
            "caseMap": case_map,
        }
    elif method == "random":
        params["fill"] = {
            "type": "seededRandom",
            "expressionObject": _property_expression([params.pop("property", None)]),
        }
    elif method == "transitionPoints":
        params["fill"] = {
            "type": "rangeMap",
            "gradient": bool(params.pop("continuous", False)),
            "expressionObject": _property_expression([params.pop("property", None)]),
            "defaultTarget": default_target,
            "rangeMap": _range_map(params.pop("transitionPoints", None)),
        }
    elif method == "classToColor":
        params["fill"] = {
            "type": "valueMap",
            "expressionObject": _property_expression([params.pop("property", None)]),
            "defaultTarget": default_target,
            "valueMap": _range_map(params.pop("colorMapping", None)),
        }
    elif method == "formula":
        params["fill"] = {
            "type": "rangeMap",
            "gradient": bool(params.pop("continuous", False)),
            "expressionObject": {
                "properties": list(params.pop("properties", None) or []),
                "values": [],
                "expression": str(params.pop("formula", "") or ""),
            },
            "defaultTarget": default_target,
            "rangeMap": _range_map(params.pop("transitionPoints", None)),
        }


def migrate_style(style: dict[str, Any]) -> dict[str, Any]:
    """
    Convert a legacy style document into the current tagged-target schema.

    Pure: the input is left untouched. Styles already on the current schema are returned
    as-is, so migrating twice is a no-op.
    """
    if style.get("method") == CURRENT_METHOD:
        return style
    out = copy.deepcopy(style)
    params = out.setdefault("parameters", {})
    _migrate_channels(params)
    _migrate_fill(str(out.get("method") or ""), params)
    out["method"] = CURRENT_METHOD
    return out


def normalize_style(style: dict[str, Any]) -> dict[str, Any]:
    """
    `migrate_style`, memoized per style object identity.
    """
    key = id(style)
    hit = _normalized_cache.get(key)
    # Keep the source object in the entry so its id cannot be recycled while cached.
    if hit is not None and hit[0] is style:
        return hit[1]
    out = migrate_style(style)
    _bounded_cache_put(_normalized_cache, key, (style, out), max_items=_MAX_CACHED_STYLES)
    return out
