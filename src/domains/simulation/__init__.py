"""Simulation Domain - 2D rigid-body physics scenes.

The scene description is stored as a ``simulation`` visualization; the
client runs the physics engine.
"""

from typing import Any

from shared.errors import ValidationError
from shared.logging import get_logger
from shared.models import ExecutionType, ToolContext, ToolDefinition, VisualizationType
from domains.base import VISUALIZATION_ID_PROPERTY, save_visualization
from storage.visualizations import VisualizationStore
from tools.registry import ToolRegistry

logger = get_logger(__name__)

SIMULATION_TYPES = [
    "falling_objects",
    "pendulum",
    "collision",
    "spring",
    "projectile",
    "inclined_plane",
    "custom",
]


DISPLAY_PHYSICS_SIMULATION = ToolDefinition(
    name="displayPhysicsSimulation",
    domain="simulation",
    description=(
        "Displays a 2D physics simulation. Use for requests involving physics concepts like "
        "falling objects, collisions, pendulums, springs, projectiles, inclined planes, and "
        "other mechanics demonstrations."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "simulationType": {
                "type": "string",
                "enum": SIMULATION_TYPES,
                "description": "Type of physics simulation to create"
            },
            "objects": {
                "type": "array",
                "description": "Physics objects to include in the simulation",
                "items": {
                    "type": "object",
                    "properties": {
                        "type": {"type": "string", "enum": ["circle", "rectangle", "polygon"]},
                        "x": {"type": "number"},
                        "y": {"type": "number"},
                        "width": {"type": "number", "exclusiveMinimum": 0},
                        "height": {"type": "number", "exclusiveMinimum": 0},
                        "radius": {"type": "number", "exclusiveMinimum": 0},
                        "isStatic": {"type": "boolean", "default": False},
                        "color": {"type": "string", "default": "#3498db"},
                        "restitution": {"type": "number", "minimum": 0, "maximum": 1, "default": 0.8},
                        "friction": {"type": "number", "minimum": 0, "maximum": 1, "default": 0.1}
                    },
                    "required": ["type", "x", "y"]
                }
            },
            "gravity": {
                "type": "object",
                "properties": {
                    "x": {"type": "number", "default": 0},
                    "y": {"type": "number", "default": 1}
                },
                "default": {"x": 0, "y": 1}
            },
            "worldBounds": {
                "type": "object",
                "properties": {
                    "width": {"type": "number", "exclusiveMinimum": 0, "default": 800},
                    "height": {"type": "number", "exclusiveMinimum": 0, "default": 600}
                },
                "default": {"width": 800, "height": 600}
            },
            "title": {"type": "string"},
            "description": {"type": "string"},
            "visualizationId": VISUALIZATION_ID_PROPERTY
        },
        "required": ["simulationType", "objects"]
    },
    execution_type=ExecutionType.PERSISTING,
)


def check_object_dimensions(objects: list[dict[str, Any]]) -> None:
    """Circles need a radius; rectangles need width and height."""
    for index, body in enumerate(objects):
        if body["type"] == "circle" and "radius" not in body:
            raise ValidationError(f"objects.{index}: circle requires 'radius'")
        if body["type"] == "rectangle" and not ("width" in body and "height" in body):
            raise ValidationError(f"objects.{index}: rectangle requires 'width' and 'height'")


def register_simulation_domain(registry: ToolRegistry, store: VisualizationStore) -> None:
    """Register the simulation tools."""

    async def display_physics_simulation(params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        check_object_dimensions(params["objects"])
        simulation_type = params["simulationType"]
        title = params.get("title") or f"{simulation_type.replace('_', ' ').title()} Simulation"
        return await save_visualization(
            store, context, params,
            type=VisualizationType.SIMULATION,
            title=title,
            description=params.get("description"),
            data={
                "simulationType": simulation_type,
                "objects": params["objects"],
                "gravity": params["gravity"],
                "worldBounds": params["worldBounds"],
            },
        )

    registry.register(DISPLAY_PHYSICS_SIMULATION, display_physics_simulation)

    logger.info("Simulation domain registered", tool_count=1)
