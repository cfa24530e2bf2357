"""
Pickup sequencing. Greedy nearest neighbour from the first stop, ETAs by fixed
per-stop interval or by an injected travel-time adapter.
"""

import math
from datetime import datetime, timedelta
from typing import List, Optional, Protocol, Sequence, Tuple

from schoolpool.domain.constraints import SequencingConfig
from schoolpool.domain.errors import ValidationError
from schoolpool.domain.geo import distance_m, haversine_m
from schoolpool.domain.models import Coordinate, PickupPoint


class TravelTimeAdapter(Protocol):
    """Driving time in minutes between two points."""

    def tt_min(self, lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        ...


class HaversineTravelTimeAdapter:
    """tt_min = straight-line km / speed_kmh * 60."""

    def __init__(self, speed_kmh: float = 30.0):
        self.speed_kmh = max(1.0, speed_kmh)

    def tt_min(self, lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        km = haversine_m(lat1, lon1, lat2, lon2) / 1000.0
        return (km / self.speed_kmh) * 60.0


def nearest_neighbour_order(coords: Sequence[Coordinate]) -> List[int]:
    """Visit order starting at index 0; ties go to the lowest input index."""
    n = len(coords)
    if n == 0:
        return []
    order = [0]
    remaining = list(range(1, n))
    while remaining:
        cur = coords[order[-1]]
        best_i, best_d = remaining[0], math.inf
        for i in remaining:
            d = distance_m(cur, coords[i])
            if d < best_d:
                best_i, best_d = i, d
        order.append(best_i)
        remaining.remove(best_i)
    return order


class PickupSequencer:
    def __init__(
        self,
        config: Optional[SequencingConfig] = None,
        adapter: Optional[TravelTimeAdapter] = None,
    ):
        self.config = config or SequencingConfig()
        self.adapter = adapter

    def sequence(
        self,
        points: Sequence[Tuple[str, Coordinate]],
        destination: Coordinate,
        base_time: Optional[datetime] = None,
    ) -> List[PickupPoint]:
        """
        points: (family_id, coordinate) pairs; the first one is the starting stop.
        Returns pickups in visiting order with sequence_order 0..N-1.
        """
        for family_id, c in points:
            if not c.is_valid:
                raise ValidationError(f"Invalid pickup coordinate for family {family_id}")
        if not destination.is_valid:
            raise ValidationError("Invalid destination coordinate")
        if not points:
            return []

        coords = [c for _, c in points]
        order = nearest_neighbour_order(coords)

        result: List[PickupPoint] = []
        elapsed_min = 0.0
        for seq, idx in enumerate(order):
            family_id, c = points[idx]
            if self.adapter is not None and seq > 0:
                prev = coords[order[seq - 1]]
                elapsed_min += self.adapter.tt_min(prev.lat, prev.lng, c.lat, c.lng)
            eta = None
            if base_time is not None:
                if self.adapter is not None:
                    eta = base_time + timedelta(minutes=elapsed_min)
                else:
                    eta = base_time + timedelta(minutes=self.config.minutes_per_stop * seq)
            result.append(PickupPoint(family_id=family_id, coordinate=c, sequence_order=seq, estimated_time=eta))
        return result

    def stops_with_destination(self, pickups: Sequence[PickupPoint], destination: Coordinate) -> List[Coordinate]:
        return [p.coordinate for p in sorted(pickups, key=lambda p: p.sequence_order)] + [destination]


def route_distance_m(pickups: Sequence[PickupPoint], destination: Coordinate) -> float:
    """Sum of legs between consecutive pickups plus the final leg to the destination."""
    ordered = sorted(pickups, key=lambda p: p.sequence_order)
    if not ordered:
        return 0.0
    total = sum(distance_m(ordered[i].coordinate, ordered[i + 1].coordinate) for i in range(len(ordered) - 1))
    return total + distance_m(ordered[-1].coordinate, destination)
