"""
Provider ports not owned by an engine, and in-memory adapters for every port (tests, demos, fixtures).
"""

import threading
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Sequence

import numpy as np
from sklearn.neighbors import BallTree

from schoolpool.domain.errors import ExternalServiceError
from schoolpool.domain.geo import EARTH_RADIUS_M, polyline_length_m, to_radians
from schoolpool.domain.models import (
    AccidentLocation,
    CalendarEvent,
    Coordinate,
    FamilyProfile,
    LocationFix,
    RouteGeometry,
    SchoolLocation,
)

MAX_LOCATION_ACCURACY_M = 100.0


class LocationProvider(Protocol):
    def current_fix(self) -> Optional[LocationFix]:
        ...


class FamilyDirectory(Protocol):
    def families_within(self, center: Coordinate, radius_m: float) -> List[FamilyProfile]:
        ...

    def get(self, family_id: str) -> Optional[FamilyProfile]:
        ...


def accept_location_fix(
    fix: Optional[LocationFix], max_accuracy_m: float = MAX_LOCATION_ACCURACY_M
) -> Optional[Coordinate]:
    """Coordinate of the fix, or None when it is missing, invalid, or too inaccurate."""
    if fix is None:
        return None
    if fix.horizontal_accuracy_m < 0 or fix.horizontal_accuracy_m > max_accuracy_m:
        return None
    if not fix.coordinate.is_valid:
        return None
    return fix.coordinate


class InMemoryFamilyDirectory:
    """Families indexed in a haversine BallTree, rebuilt on write."""

    def __init__(self, families: Sequence[FamilyProfile] = ()):
        self._families: Dict[str, FamilyProfile] = {}
        self._lock = threading.Lock()
        self._tree: Optional[BallTree] = None
        self._ids: List[str] = []
        for f in families:
            self._families[f.family_id] = f
        self._reindex()

    def _reindex(self) -> None:
        self._ids = sorted(self._families)
        coords = [self._families[i].home for i in self._ids]
        self._tree = BallTree(to_radians(coords), metric="haversine") if coords else None

    def add(self, family: FamilyProfile) -> None:
        with self._lock:
            self._families[family.family_id] = family
            self._reindex()

    def get(self, family_id: str) -> Optional[FamilyProfile]:
        return self._families.get(family_id)

    def all(self) -> List[FamilyProfile]:
        return [self._families[i] for i in sorted(self._families)]

    def families_within(self, center: Coordinate, radius_m: float) -> List[FamilyProfile]:
        with self._lock:
            tree, ids = self._tree, list(self._ids)
        if tree is None:
            return []
        q = to_radians([center])
        ind, _ = tree.query_radius(q, r=radius_m / EARTH_RADIUS_M, return_distance=True, sort_results=True)
        return [self._families[ids[int(i)]] for i in np.asarray(ind[0])]


class StaticGeoRiskProvider:
    """Fixed school/accident sets. fail=True simulates an outage."""

    def __init__(
        self,
        schools: Sequence[SchoolLocation] = (),
        accidents: Sequence[AccidentLocation] = (),
        fail: bool = False,
    ):
        self.schools = list(schools)
        self.accidents = list(accidents)
        self.fail = fail
        self.calls = 0

    def fetch_schools(self) -> List[SchoolLocation]:
        self.calls += 1
        if self.fail:
            raise ExternalServiceError("Geo risk data source unavailable")
        return list(self.schools)

    def fetch_accidents(self) -> List[AccidentLocation]:
        if self.fail:
            raise ExternalServiceError("Geo risk data source unavailable")
        return list(self.accidents)


class InMemoryCalendarProvider:
    """Events per group. fail=True simulates an outage."""

    def __init__(self, events: Optional[Dict[str, List[CalendarEvent]]] = None, fail: bool = False):
        self.events: Dict[str, List[CalendarEvent]] = {k: list(v) for k, v in (events or {}).items()}
        self.fail = fail
        self.calls = 0

    def add(self, group_id: str, event: CalendarEvent) -> None:
        self.events.setdefault(group_id, []).append(event)

    def events_between(self, group_id: str, start: datetime, end: datetime) -> List[CalendarEvent]:
        self.calls += 1
        if self.fail:
            raise ExternalServiceError("Calendar service unavailable")
        return [e for e in self.events.get(group_id, []) if e.start < end and e.end > start]


class StraightLineDirectionsProvider:
    """One straight-line route through the waypoints at a constant speed."""

    def __init__(self, speed_kmh: float = 30.0):
        self.speed_kmh = max(1.0, speed_kmh)

    def directions(
        self,
        origin: Coordinate,
        destination: Coordinate,
        waypoints: Sequence[Coordinate],
        alternatives: int,
    ) -> List[RouteGeometry]:
        stops = [origin, *waypoints, destination]
        d = polyline_length_m(stops)
        return [RouteGeometry(coordinates=tuple(stops), distance_m=d, duration_s=d / 1000.0 / self.speed_kmh * 3600.0)]


class StaticDirectionsProvider:
    """Returns the configured routes regardless of the query. fail=True simulates an outage."""

    def __init__(self, routes: Sequence[RouteGeometry] = (), fail: bool = False):
        self.routes = list(routes)
        self.fail = fail
        self.calls = 0

    def directions(
        self,
        origin: Coordinate,
        destination: Coordinate,
        waypoints: Sequence[Coordinate],
        alternatives: int,
    ) -> List[RouteGeometry]:
        self.calls += 1
        if self.fail:
            raise ExternalServiceError("Directions service unavailable")
        return self.routes[:alternatives]
