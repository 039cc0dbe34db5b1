"""
Grid planner: turns a geographic search configuration into an ordered,
deterministic list of search points.

Pure functions only; persistence happens in the search point repository.
"""

import math
from typing import Any

from leadgrid.features.crawl.grid.places import PLACES, find_place
from leadgrid.models.domain.crawl_domain import GeoConfig, GridPoint, SearchArea

DEFAULT_STEP = 0.01
DEFAULT_RADIUS = 0.1

# Absorbs float error in 2*radius/step so 0.2/0.1 yields 3 rows, not 2.
_EPSILON = 1e-9
_PRECISION = 7


class GridConfigError(ValueError):
    """Raised when a search configuration cannot produce a grid."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field
        self.recoverable = False


def _axis(center: float, radius: float, step: float) -> list[float]:
    if radius == 0:
        return [round(center, _PRECISION)]
    count = math.floor((2 * radius) / step + _EPSILON) + 1
    start = center - radius
    return [round(start + index * step, _PRECISION) for index in range(count)]


def generate_grid(
    center_lat: float, center_lng: float, radius: float, step: float = DEFAULT_STEP
) -> list[GridPoint]:
    """
    Cover the square [lat ± radius] x [lng ± radius] with points every `step`.

    Rows walk latitude south to north, columns walk longitude west to east,
    and sequences are numbered from 1 in that row-major order. A zero
    radius yields exactly the centre.
    """
    if radius < 0:
        raise GridConfigError(f"radius must be >= 0, got {radius}", field="radius")
    if radius > 0 and step <= 0:
        raise GridConfigError(f"step must be > 0, got {step}", field="step")

    latitudes = _axis(center_lat, radius, step)
    longitudes = _axis(center_lng, radius, step)

    points: list[GridPoint] = []
    sequence = 1
    for lat in latitudes:
        for lng in longitudes:
            points.append(GridPoint(sequence=sequence, latitude=lat, longitude=lng))
            sequence += 1
    return points


def resolve_search_area(geo: GeoConfig | dict[str, Any] | None) -> SearchArea | None:
    """
    Resolve a search configuration to a centre and radius.

    Precedence: named place, then explicit centre, then bounding box.
    Returns None when the configuration names no usable area (including an
    unknown place), meaning the search is unbounded.
    """
    if geo is None:
        return None
    if isinstance(geo, dict):
        geo = GeoConfig.model_validate(geo)

    if geo.country and geo.city:
        place = find_place(geo.country, geo.city)
        if place is None:
            return None
        radius = geo.radius if geo.radius is not None else place.radius
        return SearchArea(center_lat=place.lat, center_lng=place.lng, radius=radius)

    if geo.latitude is not None and geo.longitude is not None:
        radius = geo.radius if geo.radius is not None else DEFAULT_RADIUS
        return SearchArea(center_lat=geo.latitude, center_lng=geo.longitude, radius=radius)

    if geo.bounds is not None:
        bounds = geo.bounds
        center_lat = (bounds.north + bounds.south) / 2
        center_lng = (bounds.east + bounds.west) / 2
        radius = max(abs(bounds.north - bounds.south), abs(bounds.east - bounds.west)) / 2
        return SearchArea(center_lat=center_lat, center_lng=center_lng, radius=radius)

    return None


def plan_points(
    geo: GeoConfig | dict[str, Any] | None, default_step: float = DEFAULT_STEP
) -> list[GridPoint] | None:
    """Resolve and expand a configuration; None when the search is unbounded."""
    if isinstance(geo, dict):
        geo = GeoConfig.model_validate(geo)
    area = resolve_search_area(geo)
    if area is None:
        return None
    step = geo.step if geo is not None and geo.step is not None else default_step
    return generate_grid(area.center_lat, area.center_lng, area.radius, step)


def list_places() -> list[dict[str, Any]]:
    """Catalogue of supported named places, grouped by country."""
    return [
        {
            "country": country,
            "cities": [place._asdict() for place in places],
        }
        for country, places in PLACES.items()
    ]
