"""Helpers shared by the tool domains.

Persisting tools perform exactly one write: an update when a visualization
id is supplied, an insert otherwise. The returned payload is built only
after the write has committed.
"""

from typing import Any, Optional

from shared.errors import PersistenceError, UnauthenticatedError
from shared.logging import get_logger
from shared.models import ToolContext, VisualizationType
from storage.visualizations import VisualizationStore

logger = get_logger(__name__)


# Reusable schema fragment for edit-in-place
VISUALIZATION_ID_PROPERTY = {
    "type": "string",
    "description": "Id of an existing visualization to update in place. Omit to create a new one."
}


async def target_visualization_id(
    store: VisualizationStore,
    parameters: dict[str, Any],
    context: ToolContext,
    type: VisualizationType,
) -> Optional[str]:
    """
    Edit target: the tool argument first, then the request-level id.

    The request-level id names whatever the user is editing, so it only
    applies to tools producing that kind of visualization. Other tools in
    the same turn create new rows.
    """
    if parameters.get("visualizationId"):
        return parameters["visualizationId"]
    if not context.visualization_id:
        return None

    existing = await store.get(context.visualization_id)
    if existing is not None and existing.type != type.value:
        return None
    return context.visualization_id


async def save_visualization(
    store: VisualizationStore,
    context: ToolContext,
    parameters: dict[str, Any],
    type: VisualizationType,
    title: str,
    data: dict[str, Any],
    description: Optional[str] = None,
) -> dict[str, Any]:
    """
    Insert or update the visualization for a persisting tool call.

    Returns:
        Display payload carrying the committed visualization id

    Raises:
        UnauthenticatedError: If there is no authenticated user
        PersistenceError: If there is no conversation to attach to
        NotFoundError: If the update target does not exist or holds another type
    """
    if context.user is None:
        raise UnauthenticatedError("Authentication required to save visualizations")

    visualization_id = await target_visualization_id(store, parameters, context, type)

    if visualization_id:
        visualization = await store.update(
            visualization_id,
            user_id=context.user.user_id,
            type=type.value,
            title=title,
            data=data,
            description=description,
        )
        created = False
    else:
        if not context.conversation_id:
            raise PersistenceError("No conversation to attach the visualization to")
        visualization = await store.create(
            user_id=context.user.user_id,
            conversation_id=context.conversation_id,
            type=type.value,
            title=title,
            data=data,
            description=description,
        )
        created = True

    return {
        "visualizationId": visualization.id,
        "type": visualization.type,
        "title": visualization.title,
        "description": visualization.description,
        "data": visualization.data,
        "created": created,
    }
