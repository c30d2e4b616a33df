"""Whitelisted evaluation of math expressions over numpy arrays.

Expressions use math.js-style syntax (``x^2``, ``sin(x)*cos(y)``). Only
numbers, declared variables, the constants ``pi`` and ``e`` and the
functions in ``FUNCTIONS`` are accepted; anything else is rejected before
evaluation.
"""

import ast
import operator
from typing import Any, Union

import numpy as np

Number = Union[float, np.ndarray]

FUNCTIONS = {
    "sin": np.sin,
    "cos": np.cos,
    "tan": np.tan,
    "asin": np.arcsin,
    "acos": np.arccos,
    "atan": np.arctan,
    "sinh": np.sinh,
    "cosh": np.cosh,
    "tanh": np.tanh,
    "exp": np.exp,
    "log": np.log,
    "ln": np.log,
    "log10": np.log10,
    "log2": np.log2,
    "sqrt": np.sqrt,
    "abs": np.abs,
    "floor": np.floor,
    "ceil": np.ceil,
    "sign": np.sign,
}

CONSTANTS = {
    "pi": np.pi,
    "e": np.e,
}

_BINARY_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Pow: operator.pow,
    ast.Mod: operator.mod,
}

_UNARY_OPERATORS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

MAX_EXPRESSION_LENGTH = 500


class ExpressionError(ValueError):
    """The expression is malformed or uses something not whitelisted."""


def parse_expression(expression: str, variables: set[str]) -> ast.Expression:
    """
    Parse and check an expression without evaluating it.

    Raises:
        ExpressionError: If parsing fails or a disallowed construct is used
    """
    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise ExpressionError("Expression is too long")

    source = expression.replace("^", "**")
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as e:
        raise ExpressionError(f"Invalid expression: {expression}") from e

    for node in ast.walk(tree):
        if isinstance(node, (ast.Expression, ast.Load)):
            continue
        if isinstance(node, ast.Constant):
            if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
                raise ExpressionError(f"Unsupported literal: {node.value!r}")
        elif isinstance(node, ast.Name):
            if node.id not in variables and node.id not in CONSTANTS and node.id not in FUNCTIONS:
                raise ExpressionError(f"Unknown name: {node.id}")
        elif isinstance(node, ast.BinOp):
            if type(node.op) not in _BINARY_OPERATORS:
                raise ExpressionError("Unsupported operator")
        elif isinstance(node, ast.UnaryOp):
            if type(node.op) not in _UNARY_OPERATORS:
                raise ExpressionError("Unsupported operator")
        elif isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id not in FUNCTIONS:
                raise ExpressionError("Only built-in math functions may be called")
            if node.keywords or len(node.args) != 1:
                raise ExpressionError(f"{node.func.id}() takes exactly one argument")
        elif isinstance(node, (ast.operator, ast.unaryop)):
            continue
        else:
            raise ExpressionError(f"Unsupported syntax: {type(node).__name__}")

    return tree


def _eval(node: ast.AST, scope: dict[str, Any]) -> Number:
    if isinstance(node, ast.Expression):
        return _eval(node.body, scope)
    if isinstance(node, ast.Constant):
        return np.float64(node.value)
    if isinstance(node, ast.Name):
        if node.id in scope:
            return scope[node.id]
        if node.id in CONSTANTS:
            return np.float64(CONSTANTS[node.id])
        raise ExpressionError(f"{node.id} is a function, not a value")
    if isinstance(node, ast.BinOp):
        op = _BINARY_OPERATORS[type(node.op)]
        return op(_eval(node.left, scope), _eval(node.right, scope))
    if isinstance(node, ast.UnaryOp):
        return _UNARY_OPERATORS[type(node.op)](_eval(node.operand, scope))
    if isinstance(node, ast.Call):
        return FUNCTIONS[node.func.id](_eval(node.args[0], scope))
    raise ExpressionError(f"Unsupported syntax: {type(node).__name__}")


def evaluate(expression: str, variables: dict[str, Number]) -> Number:
    """
    Evaluate ``expression`` with the given variable bindings.

    Invalid operations (division by zero, log of negatives) yield nan/inf
    instead of raising.
    """
    tree = parse_expression(expression, set(variables))
    with np.errstate(all="ignore"):
        return _eval(tree, dict(variables))


def to_json_values(values: Any) -> Any:
    """Convert a numpy result to JSON-safe lists, mapping nan/inf to None."""
    array = np.asarray(values, dtype=float)
    if array.ndim == 0:
        value = float(array)
        return value if np.isfinite(value) else None
    return [to_json_values(item) for item in array]
