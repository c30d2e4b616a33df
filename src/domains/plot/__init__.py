"""Plot Domain - Plotly charts and function plots.

Every tool here persists a visualization of type ``plot``. Function plots
are sampled server-side so the stored record is a complete Plotly figure.
"""

from typing import Any

import numpy as np

from shared.errors import ValidationError
from shared.logging import get_logger
from shared.models import ExecutionType, ToolContext, ToolDefinition, VisualizationType
from domains.base import VISUALIZATION_ID_PROPERTY, save_visualization
from domains.expressions import ExpressionError, evaluate, to_json_values
from storage.visualizations import VisualizationStore
from tools.registry import ToolRegistry

logger = get_logger(__name__)

SAMPLES_2D = 200
SAMPLES_3D = 50

_VARIABLE_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "description": "Name of the variable, typically 'x'"},
        "range": {
            "type": "array",
            "items": {"type": "number"},
            "minItems": 2,
            "maxItems": 2,
            "description": "Range [min, max] for the variable"
        }
    },
    "required": ["name", "range"]
}


CREATE_PLOTLY_CHART = ToolDefinition(
    name="createPlotlyChart",
    domain="plot",
    description=(
        "Render an interactive Plotly.js figure. The `figure` can include `data`, `layout` "
        "and optional `frames` to create animations. When you supply a non-empty `frames` "
        "array, also include `layout.updatemenus` or `layout.sliders` so play/pause "
        "controls are available. Pass `visualizationId` to refine an existing chart."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "figure": {
                "type": "object",
                "description": "Plotly figure JSON with data, layout and optional frames",
                "properties": {
                    "data": {"type": "array"},
                    "layout": {"type": "object"},
                    "frames": {"type": "array"}
                },
                "required": ["data"]
            },
            "title": {"type": "string", "description": "Optional title"},
            "visualizationId": VISUALIZATION_ID_PROPERTY
        },
        "required": ["figure"]
    },
    execution_type=ExecutionType.PERSISTING,
)

DISPLAY_PLOTLY_CHART = ToolDefinition(
    name="displayPlotlyChart",
    domain="plot",
    description=(
        "Displays a 2D plot or chart using Plotly. Use for data that can be plotted "
        "like line charts, scatter plots, etc."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "data": {"type": "array", "description": "The data array for Plotly"},
            "layout": {"type": "object", "description": "The layout object for Plotly"},
            "description": {"type": "string"},
            "visualizationId": VISUALIZATION_ID_PROPERTY
        },
        "required": ["data"]
    },
    execution_type=ExecutionType.PERSISTING,
)

PLOT_FUNCTION_2D = ToolDefinition(
    name="plotFunction2D",
    domain="plot",
    description=(
        "Plots 2D mathematical functions. Use for single-variable functions like "
        "sin(x), x^2, etc."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "functionString": {
                "type": "string",
                "minLength": 1,
                "description": "The function to plot using math.js syntax, e.g. sin(x) or x^2"
            },
            "variable": _VARIABLE_SCHEMA,
            "plotType": {"type": "string", "enum": ["line", "scatter"], "default": "line"},
            "title": {"type": "string"},
            "visualizationId": VISUALIZATION_ID_PROPERTY
        },
        "required": ["functionString", "variable"]
    },
    execution_type=ExecutionType.PERSISTING,
    examples=[
        {"input": {"functionString": "sin(x)", "variable": {"name": "x", "range": [-6.28, 6.28]}}}
    ],
)

PLOT_FUNCTION_3D = ToolDefinition(
    name="plotFunction3D",
    domain="plot",
    description=(
        "Plots 3D mathematical functions. Use for two-variable functions like "
        "sin(x)*cos(y), x^2 + y^2, etc."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "functionString": {
                "type": "string",
                "minLength": 1,
                "description": "The function to plot using math.js syntax"
            },
            "variables": {
                "type": "array",
                "items": _VARIABLE_SCHEMA,
                "minItems": 2,
                "maxItems": 2
            },
            "plotType": {"type": "string", "enum": ["surface", "contour"], "default": "surface"},
            "title": {"type": "string"},
            "visualizationId": VISUALIZATION_ID_PROPERTY
        },
        "required": ["functionString", "variables"]
    },
    execution_type=ExecutionType.PERSISTING,
)


def _axis(variable: dict[str, Any], samples: int) -> np.ndarray:
    low, high = variable["range"]
    if not low < high:
        raise ValidationError(
            f"Range for '{variable['name']}' must satisfy min < max, got [{low}, {high}]"
        )
    return np.linspace(low, high, samples)


def _sample(expression: str, scope: dict[str, np.ndarray], shape: tuple[int, ...]) -> np.ndarray:
    try:
        values = evaluate(expression, scope)
    except ExpressionError as e:
        raise ValidationError(str(e)) from e
    # constant functions evaluate to a scalar
    return np.broadcast_to(np.asarray(values, dtype=float), shape)


def build_2d_figure(
    function_string: str,
    variable: dict[str, Any],
    plot_type: str,
    title: str,
) -> dict[str, Any]:
    """Sample ``function_string`` over the variable's range into a Plotly figure."""
    name = variable["name"]
    x = _axis(variable, SAMPLES_2D)
    y = _sample(function_string, {name: x}, x.shape)

    return {
        "data": [{
            "type": "scatter",
            "mode": "lines" if plot_type == "line" else "markers",
            "name": function_string,
            "x": to_json_values(x),
            "y": to_json_values(y),
        }],
        "layout": {
            "title": {"text": title},
            "xaxis": {"title": {"text": name}},
            "yaxis": {"title": {"text": f"f({name})"}},
        },
    }


def build_3d_figure(
    function_string: str,
    variables: list[dict[str, Any]],
    plot_type: str,
    title: str,
) -> dict[str, Any]:
    """Sample a two-variable function on a grid into a surface or contour figure."""
    first, second = variables
    if first["name"] == second["name"]:
        raise ValidationError("The two variables must have different names")

    u = _axis(first, SAMPLES_3D)
    v = _axis(second, SAMPLES_3D)
    grid_u, grid_v = np.meshgrid(u, v)
    z = _sample(
        function_string,
        {first["name"]: grid_u, second["name"]: grid_v},
        grid_u.shape,
    )

    layout: dict[str, Any] = {"title": {"text": title}}
    if plot_type == "surface":
        layout["scene"] = {
            "xaxis": {"title": {"text": first["name"]}},
            "yaxis": {"title": {"text": second["name"]}},
            "zaxis": {"title": {"text": "f"}},
        }
    else:
        layout["xaxis"] = {"title": {"text": first["name"]}}
        layout["yaxis"] = {"title": {"text": second["name"]}}

    return {
        "data": [{
            "type": plot_type,
            "x": to_json_values(u),
            "y": to_json_values(v),
            "z": to_json_values(z),
        }],
        "layout": layout,
    }


def _layout_title(layout: dict[str, Any]) -> str | None:
    title = layout.get("title")
    if isinstance(title, dict):
        return title.get("text")
    return title


def register_plot_domain(registry: ToolRegistry, store: VisualizationStore) -> None:
    """Register the plot tools."""

    async def create_plotly_chart(params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        figure = params["figure"]
        title = params.get("title") or _layout_title(figure.get("layout", {})) or "Chart"
        return await save_visualization(
            store, context, params,
            type=VisualizationType.PLOT,
            title=title,
            data={"figure": figure},
        )

    async def display_plotly_chart(params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        description = params.get("description")
        layout = params.get("layout") or {"title": description or "Chart"}
        title = _layout_title(layout) or description or "Chart"
        return await save_visualization(
            store, context, params,
            type=VisualizationType.PLOT,
            title=title,
            description=description or "Interactive Plot",
            data={"figure": {"data": params["data"], "layout": layout}},
        )

    async def plot_function_2d(params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        function_string = params["functionString"]
        plot_type = params["plotType"]
        title = params.get("title") or f"Plot of {function_string}"
        figure = build_2d_figure(function_string, params["variable"], plot_type, title)
        return await save_visualization(
            store, context, params,
            type=VisualizationType.PLOT,
            title=title,
            description=f"2D {plot_type} plot of {function_string}",
            data={
                "figure": figure,
                "functionString": function_string,
                "variables": [params["variable"]],
                "plotType": plot_type,
            },
        )

    async def plot_function_3d(params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        function_string = params["functionString"]
        plot_type = params["plotType"]
        title = params.get("title") or f"3D Plot of {function_string}"
        figure = build_3d_figure(function_string, params["variables"], plot_type, title)
        return await save_visualization(
            store, context, params,
            type=VisualizationType.PLOT,
            title=title,
            description=f"3D {plot_type} plot of {function_string}",
            data={
                "figure": figure,
                "functionString": function_string,
                "variables": params["variables"],
                "plotType": plot_type,
            },
        )

    registry.register(CREATE_PLOTLY_CHART, create_plotly_chart)
    registry.register(DISPLAY_PLOTLY_CHART, display_plotly_chart)
    registry.register(PLOT_FUNCTION_2D, plot_function_2d)
    registry.register(PLOT_FUNCTION_3D, plot_function_3d)

    logger.info("Plot domain registered", tool_count=len(registry.list_tools(domain="plot")))
