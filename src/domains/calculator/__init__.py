"""Calculator Domain - stateless expression evaluation."""

from typing import Any

import numpy as np

from shared.errors import ValidationError
from shared.logging import get_logger
from shared.models import ExecutionType, ToolContext, ToolDefinition
from domains.expressions import ExpressionError, evaluate, to_json_values
from tools.registry import ToolRegistry

logger = get_logger(__name__)


EVALUATE_EXPRESSION = ToolDefinition(
    name="evaluateExpression",
    domain="calculator",
    description=(
        "Evaluate a mathematical expression in math.js syntax, e.g. 'sqrt(2)*pi' or "
        "'x^2 + 1' with variables {\"x\": 3}. Use for exact arithmetic instead of "
        "computing in your head. Nothing is saved."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "expression": {"type": "string", "minLength": 1},
            "variables": {
                "type": "object",
                "additionalProperties": {"type": "number"},
                "default": {}
            }
        },
        "required": ["expression"]
    },
    execution_type=ExecutionType.STATELESS,
)


async def evaluate_expression(params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    expression = params["expression"]
    variables = {name: np.float64(value) for name, value in params["variables"].items()}
    try:
        value = evaluate(expression, variables)
    except ExpressionError as e:
        raise ValidationError(str(e)) from e

    result = to_json_values(value)
    return {
        "expression": expression,
        "variables": params["variables"],
        "result": result,
        "finite": result is not None,
    }


def register_calculator_domain(registry: ToolRegistry) -> None:
    """Register the calculator tools."""
    registry.register(EVALUATE_EXPRESSION, evaluate_expression)
    logger.info("Calculator domain registered", tool_count=1)
