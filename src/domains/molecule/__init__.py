"""Molecule Domain - 3D molecular structure viewers.

Tools here persist a visualization of type ``molecule`` holding everything
a client-side viewer needs (identifier plus display options).
"""

from typing import Any

from shared.logging import get_logger
from shared.models import ExecutionType, ToolContext, ToolDefinition, VisualizationType
from domains.base import VISUALIZATION_ID_PROPERTY, save_visualization
from storage.visualizations import VisualizationStore
from tools.registry import ToolRegistry

logger = get_logger(__name__)

REPRESENTATION_STYLES = ["stick", "sphere", "line", "cartoon", "surface", "ball-stick"]
SELECTION_STYLES = ["stick", "sphere", "line", "cartoon", "surface"]
COLOR_SCHEMES = ["element", "chain", "residue", "ss", "spectrum", "custom"]
SURFACE_TYPES = ["vdw", "sas", "ms"]


SHOW_MOLECULE_STRUCTURE = ToolDefinition(
    name="showMoleculeStructure",
    domain="molecule",
    description=(
        "Render an interactive 3D molecular structure. Provide the PDB identifier "
        "(4-character code, e.g. \"1cbs\"). Optionally include a short `title` to display "
        "above the viewer."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "pdbId": {
                "type": "string",
                "minLength": 4,
                "maxLength": 4,
                "pattern": "^[A-Za-z0-9]{4}$",
                "description": "The 4-character PDB identifier of the molecule to display"
            },
            "title": {"type": "string", "description": "Optional short title to render above the viewer"},
            "visualizationId": VISUALIZATION_ID_PROPERTY
        },
        "required": ["pdbId"]
    },
    execution_type=ExecutionType.PERSISTING,
    examples=[{"input": {"pdbId": "1cbs"}, "description": "Cellular retinoic acid binding protein"}],
)

DISPLAY_MOLECULE_3D = ToolDefinition(
    name="displayMolecule3D",
    domain="molecule",
    description=(
        "Displays a 3D molecular structure with advanced visualization options. Supports "
        "PDB, SMILES, CID, and compound names with customizable representation styles, "
        "coloring schemes, surface rendering, and region-specific styling."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "identifierType": {
                "type": "string",
                "enum": ["pdb", "smiles", "cid", "name"],
                "description": (
                    "'pdb' for Protein Data Bank IDs, 'smiles' for chemical structure notation, "
                    "'cid' for PubChem compound IDs, or 'name' for compound names"
                )
            },
            "identifier": {
                "type": "string",
                "minLength": 1,
                "description": "The molecular identifier, e.g. '1CRN', 'CCO' or '702'"
            },
            "representationStyle": {"type": "string", "enum": REPRESENTATION_STYLES, "default": "stick"},
            "colorScheme": {"type": "string", "enum": COLOR_SCHEMES, "default": "element"},
            "selections": {
                "type": "array",
                "default": [],
                "items": {
                    "type": "object",
                    "properties": {
                        "region": {"type": "string", "description": "Selection criteria using 3Dmol syntax"},
                        "style": {"type": "string", "enum": SELECTION_STYLES},
                        "color": {"type": "string", "description": "Custom color for this region"}
                    },
                    "required": ["region", "style", "color"]
                }
            },
            "showSurface": {"type": "boolean", "default": False},
            "surfaceType": {"type": "string", "enum": SURFACE_TYPES, "default": "vdw"},
            "surfaceOpacity": {"type": "number", "minimum": 0, "maximum": 1, "default": 0.7},
            "showLabels": {"type": "boolean", "default": False},
            "backgroundColor": {"type": "string", "default": "white"},
            "description": {"type": "string", "default": ""},
            "visualizationId": VISUALIZATION_ID_PROPERTY
        },
        "required": ["identifierType", "identifier"]
    },
    execution_type=ExecutionType.PERSISTING,
)

_VIEWER_OPTIONS = (
    "representationStyle",
    "colorScheme",
    "selections",
    "showSurface",
    "surfaceType",
    "surfaceOpacity",
    "showLabels",
    "backgroundColor",
)


def uses_advanced_viewer(options: dict[str, Any]) -> bool:
    """True when any option departs from the plain stick/element view."""
    return (
        options.get("representationStyle") != "stick"
        or options.get("colorScheme") != "element"
        or bool(options.get("selections"))
        or bool(options.get("showSurface"))
        or bool(options.get("showLabels"))
        or options.get("backgroundColor") != "white"
    )


def register_molecule_domain(registry: ToolRegistry, store: VisualizationStore) -> None:
    """Register the molecule tools."""

    async def show_molecule_structure(params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        pdb_id = params["pdbId"]
        return await save_visualization(
            store, context, params,
            type=VisualizationType.MOLECULE,
            title=params.get("title") or f"Structure {pdb_id.upper()}",
            description=f"3D view of PDB: {pdb_id.upper()}",
            data={"identifierType": "pdb", "identifier": pdb_id, "pdbId": pdb_id},
        )

    async def display_molecule_3d(params: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        identifier_type = params["identifierType"]
        identifier = params["identifier"]
        options = {key: params[key] for key in _VIEWER_OPTIONS}
        return await save_visualization(
            store, context, params,
            type=VisualizationType.MOLECULE,
            title=f"3D Structure - {identifier}",
            description=(
                params["description"]
                or f"Advanced 3D view of {identifier_type.upper()}: {identifier}"
            ),
            data={
                "identifierType": identifier_type,
                "identifier": identifier,
                "viewer": "advanced" if uses_advanced_viewer(options) else "simple",
                **options,
            },
        )

    registry.register(SHOW_MOLECULE_STRUCTURE, show_molecule_structure)
    registry.register(DISPLAY_MOLECULE_3D, display_molecule_3d)

    logger.info("Molecule domain registered", tool_count=len(registry.list_tools(domain="molecule")))
