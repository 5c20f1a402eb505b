"""Stop ordering for tours.

Pure-function module, NO database access. Inputs are plain ``Location``
records so the optimizer can be called from the tour service or from tests
without touching ORM objects.

Routes are open paths (the tour does not return to its first house) and
distances are great-circle kilometres. Ordering runs nearest-neighbour from
every candidate start, shortens each path with 2-opt, and keeps the best.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence

EARTH_RADIUS_KM = 6371.0

# Duration estimate: urban driving plus parking/walking time at each house
AVERAGE_SPEED_KMH = 30.0
MINUTES_PER_STOP = 15

MAPS_DIR_URL = "https://www.google.com/maps/dir/"

_EPSILON = 1e-9


@dataclass(frozen=True)
class Location:
    id: str
    latitude: float
    longitude: float


@dataclass(frozen=True)
class OptimizedRoute:
    locations: list[Location]
    total_distance_km: float
    estimated_minutes: int
    maps_url: str


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Return the great-circle distance in kilometres between two lat/lng points."""
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(dlng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def route_length_km(locations: Sequence[Location]) -> float:
    return sum(
        haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)
        for a, b in zip(locations, locations[1:])
    )


def estimate_minutes(distance_km: float, stops: int) -> int:
    driving = distance_km / AVERAGE_SPEED_KMH * 60
    return round(driving + stops * MINUTES_PER_STOP)


def maps_url(locations: Sequence[Location]) -> str:
    """Google Maps directions link through every location in order."""
    if not locations:
        return ""
    return MAPS_DIR_URL + "/".join(f"{loc.latitude},{loc.longitude}" for loc in locations)


def improvement_pct(original: Sequence[Location], optimized: Sequence[Location]) -> float:
    """Percentage of distance saved by ``optimized`` over ``original``, 1 decimal."""
    before = route_length_km(original)
    if before == 0:
        return 0.0
    after = route_length_km(optimized)
    return round((before - after) / before * 100, 1)


# ── Ordering ─────────────────────────────────────────────────────────────────


def _distance_matrix(locations: Sequence[Location]) -> list[list[float]]:
    return [
        [
            0.0 if i == j else haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)
            for j, b in enumerate(locations)
        ]
        for i, a in enumerate(locations)
    ]


def _path_length(route: Sequence[int], matrix: list[list[float]]) -> float:
    return sum(matrix[a][b] for a, b in zip(route, route[1:]))


def _nearest_neighbour(matrix: list[list[float]], start: int) -> list[int]:
    route = [start]
    remaining = set(range(len(matrix))) - {start}
    while remaining:
        current = route[-1]
        nearest = min(remaining, key=lambda i: (matrix[current][i], i))
        route.append(nearest)
        remaining.remove(nearest)
    return route


def _two_opt(route: list[int], matrix: list[list[float]]) -> list[int]:
    """Reverse inner segments while that shortens the path. ``route[0]`` stays put."""
    best = list(route)
    best_length = _path_length(best, matrix)
    improved = True
    while improved:
        improved = False
        for i in range(len(best) - 2):
            for j in range(i + 2, len(best)):
                candidate = best[: i + 1] + best[i + 1 : j + 1][::-1] + best[j + 1 :]
                length = _path_length(candidate, matrix)
                if length < best_length - _EPSILON:
                    best, best_length = candidate, length
                    improved = True
    return best


def optimize(locations: Sequence[Location], start_id: Optional[str] = None) -> OptimizedRoute:
    """Return the shortest visiting order found for ``locations``.

    With ``start_id`` the route is pinned to begin at that location;
    otherwise every location is tried as the start.
    """
    locations = list(locations)
    if len(locations) < 2:
        return OptimizedRoute(
            locations=locations,
            total_distance_km=0.0,
            estimated_minutes=estimate_minutes(0.0, len(locations)),
            maps_url=maps_url(locations),
        )

    matrix = _distance_matrix(locations)
    starts = [i for i, loc in enumerate(locations) if loc.id == start_id] or range(len(locations))

    best_route: list[int] = []
    best_length = math.inf
    for start in starts:
        route = _two_opt(_nearest_neighbour(matrix, start), matrix)
        length = _path_length(route, matrix)
        if length < best_length - _EPSILON:
            best_route, best_length = route, length

    ordered = [locations[i] for i in best_route]
    return OptimizedRoute(
        locations=ordered,
        total_distance_km=round(best_length, 1),
        estimated_minutes=estimate_minutes(best_length, len(ordered)),
        maps_url=maps_url(ordered),
    )
