"""Tool Domains.

Each domain contains:
- Tool definitions with JSON input schemas
- Executor coroutines

Domains share no state with each other; persisting domains write only
through the visualization store they are given.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from storage.visualizations import VisualizationStore
    from tools.registry import ToolRegistry


def load_all_domains(registry: "ToolRegistry", store: "VisualizationStore") -> None:
    """
    Register every domain's tools.

    Called once at startup; the registry is read-only afterwards.
    """
    from domains.plot import register_plot_domain
    from domains.molecule import register_molecule_domain
    from domains.simulation import register_simulation_domain
    from domains.calculator import register_calculator_domain

    register_plot_domain(registry, store)
    register_molecule_domain(registry, store)
    register_simulation_domain(registry, store)
    register_calculator_domain(registry)


__all__ = ["load_all_domains"]
