"""
Geodesic helpers. Haversine on a spherical earth, scalar and vectorised.
"""

import math

import numpy as np

from schoolpool.domain.models import Coordinate

EARTH_RADIUS_M = 6371000.0


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1_r = math.radians(lat1)
    lat2_r = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlon / 2) ** 2
    )
    c = 2 * math.asin(min(1.0, math.sqrt(a)))
    return EARTH_RADIUS_M * c


def distance_m(a: Coordinate, b: Coordinate) -> float:
    return haversine_m(a.lat, a.lng, b.lat, b.lng)


def to_radians(coords: list[Coordinate]) -> np.ndarray:
    """(n, 2) array of [lat, lng] in radians, the layout BallTree(metric="haversine") expects."""
    if not coords:
        return np.empty((0, 2), dtype=float)
    return np.radians(np.array([[c.lat, c.lng] for c in coords], dtype=float))


def polyline_length_m(coords: list[Coordinate]) -> float:
    return sum(distance_m(coords[i], coords[i + 1]) for i in range(len(coords) - 1))


def densify(coords: list[Coordinate], spacing_m: float) -> list[Coordinate]:
    """
    Resample a polyline so that consecutive points are at most spacing_m apart.
    Linear interpolation in lat/lng, fine at street scale. Original vertices are kept.
    """
    if len(coords) <= 1:
        return list(coords)
    out: list[Coordinate] = [coords[0]]
    for a, b in zip(coords, coords[1:]):
        seg = distance_m(a, b)
        steps = max(1, int(math.ceil(seg / spacing_m))) if spacing_m > 0 else 1
        for k in range(1, steps + 1):
            t = k / steps
            out.append(Coordinate(lat=a.lat + (b.lat - a.lat) * t, lng=a.lng + (b.lng - a.lng) * t))
    return out
