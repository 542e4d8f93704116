from __future__ import annotations

import ast
import math
import operator
import re
from typing import Any, Callable


_MAX_EXPRESSION_CHARS = 2_000
_MAX_EXPONENT = 1_000

_NOT_RE = re.compile(r"!(?!=)")

_CONSTANTS: dict[str, Any] = {
    "true": True,
    "false": False,
    "null": None,
    "pi": math.pi,
    "e": math.e,
}

_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
    "floor": math.floor,
    "ceil": math.ceil,
    "sqrt": math.sqrt,
    "log": math.log,
    "exp": math.exp,
}


class ExpressionError(ValueError):
    pass


def translate_operators(expression: str) -> str:
    """
    Rewrite C-style logical operators into the evaluator's keywords.

    `||` -> or, `&&` -> and, `!` -> not (but `!=` stays), `^` -> power.
    `===` and `!==` are read as plain (strict) equality.
    """
    s = expression.replace("!==", "!=").replace("===", "==")
    s = s.replace("||", " or ").replace("&&", " and ")
    s = _NOT_RE.sub(" not ", s)
    return s.replace("^", "**").strip()


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _strict_equal(a: Any, b: Any) -> bool:
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if _is_number(a) and _is_number(b):
        return a == b
    return type(a) is type(b) and a == b


def _numeric(v: Any) -> int | float:
    if not _is_number(v):
        raise ExpressionError(f"not a number: {v!r}")
    return v


def _power(a: Any, b: Any) -> float:
    if abs(_numeric(b)) > _MAX_EXPONENT:
        raise ExpressionError("exponent too large")
    # Float power: overflow raises OverflowError instead of building huge integers.
    return math.pow(float(_numeric(a)), float(b))


_BIN_OPS: dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: lambda a, b: _numeric(a) + _numeric(b),
    ast.Sub: lambda a, b: _numeric(a) - _numeric(b),
    ast.Mult: lambda a, b: _numeric(a) * _numeric(b),
    ast.Div: lambda a, b: _numeric(a) / _numeric(b),
    ast.Mod: lambda a, b: _numeric(a) % _numeric(b),
    ast.Pow: _power,
}

_COMPARE_OPS: dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: _strict_equal,
    ast.NotEq: lambda a, b: not _strict_equal(a, b),
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
}


def _eval(node: ast.AST, names: dict[str, Any]) -> Any:
    if isinstance(node, ast.Expression):
        return _eval(node.body, names)
    if isinstance(node, ast.Constant):
        if node.value is None or isinstance(node.value, (bool, int, float, str)):
            return node.value
        raise ExpressionError("unsupported literal")
    if isinstance(node, ast.Name):
        if node.id in names:
            return names[node.id]
        if node.id in _CONSTANTS:
            return _CONSTANTS[node.id]
        raise ExpressionError(f"unknown variable: {node.id}")
    if isinstance(node, ast.BoolOp):
        if isinstance(node.op, ast.And):
            return all(bool(_eval(v, names)) for v in node.values)
        return any(bool(_eval(v, names)) for v in node.values)
    if isinstance(node, ast.UnaryOp):
        v = _eval(node.operand, names)
        if isinstance(node.op, ast.Not):
            return not v
        if isinstance(node.op, ast.USub):
            return -_numeric(v)
        if isinstance(node.op, ast.UAdd):
            return +_numeric(v)
        raise ExpressionError("unsupported unary operator")
    if isinstance(node, ast.BinOp):
        fn = _BIN_OPS.get(type(node.op))
        if fn is None:
            raise ExpressionError("unsupported operator")
        return fn(_eval(node.left, names), _eval(node.right, names))
    if isinstance(node, ast.Compare):
        left = _eval(node.left, names)
        for op, right_node in zip(node.ops, node.comparators):
            fn = _COMPARE_OPS.get(type(op))
            if fn is None:
                raise ExpressionError("unsupported comparison")
            right = _eval(right_node, names)
            if not fn(left, right):
                return False
            left = right
        return True
    if isinstance(node, ast.Call):
        if not isinstance(node.func, ast.Name) or node.keywords:
            raise ExpressionError("unsupported call")
        fn = _FUNCTIONS.get(node.func.id)
        if fn is None:
            raise ExpressionError(f"unknown function: {node.func.id}")
        return fn(*[_numeric(_eval(a, names)) for a in node.args])
    raise ExpressionError(f"unsupported syntax: {type(node).__name__}")


def bind_variables(expression_object: dict[str, Any], properties: dict[str, Any]) -> dict[str, Any]:
    names: dict[str, Any] = {}
    for i, prop in enumerate(expression_object.get("properties") or []):
        names[f"property{i + 1}"] = properties.get(prop)
    for i, value in enumerate(expression_object.get("values") or []):
        names[f"value{i + 1}"] = value
    return names


def evaluate_expression(expression_object: Any, properties: dict[str, Any] | None) -> Any:
    """
    Evaluate a style expression against a feature's properties.

    `expression_object` = {"properties": [...], "values": [...], "expression": "..."};
    properties bind to property1..n, literal values to value1..n. Returns None on any
    failure instead of raising.
    """
    if not isinstance(expression_object, dict):
        return None
    expression = expression_object.get("expression")
    if not isinstance(expression, str) or len(expression) > _MAX_EXPRESSION_CHARS:
        return None
    try:
        names = bind_variables(expression_object, properties or {})
        tree = ast.parse(translate_operators(expression), mode="eval")
        return _eval(tree, names)
    except Exception:
        return None
