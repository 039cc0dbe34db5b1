"""Geographic grid planning for crawl tasks."""

from leadgrid.features.crawl.grid.planner import (
    DEFAULT_STEP,
    GridConfigError,
    generate_grid,
    list_places,
    plan_points,
    resolve_search_area,
)

__all__ = [
    "DEFAULT_STEP",
    "GridConfigError",
    "generate_grid",
    "list_places",
    "plan_points",
    "resolve_search_area",
]
