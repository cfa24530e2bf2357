from datetime import timedelta

import pytest

from conftest import SCHOOL, T0, north
from schoolpool.core.routing_engine.pickup_sequencer import (
    HaversineTravelTimeAdapter,
    PickupSequencer,
    nearest_neighbour_order,
    route_distance_m,
)
from schoolpool.domain.errors import ValidationError
from schoolpool.domain.models import Coordinate

START = north(SCHOOL, 2000)


def test_nearest_neighbour_visits_closest_stop_next():
    points = [("a", START), ("b", north(START, 1000)), ("c", north(START, 300))]
    pickups = PickupSequencer().sequence(points, SCHOOL)
    assert [p.family_id for p in pickups] == ["a", "c", "b"]
    assert [p.sequence_order for p in pickups] == [0, 1, 2]


def test_fixed_interval_etas():
    points = [("a", START), ("b", north(START, 1000)), ("c", north(START, 300))]
    pickups = PickupSequencer().sequence(points, SCHOOL, base_time=T0)
    assert [p.estimated_time for p in pickups] == [T0, T0 + timedelta(minutes=3), T0 + timedelta(minutes=6)]


def test_no_base_time_means_no_etas():
    pickups = PickupSequencer().sequence([("a", START), ("b", north(START, 100))], SCHOOL)
    assert all(p.estimated_time is None for p in pickups)


def test_adapter_etas_accumulate_travel_time():
    sequencer = PickupSequencer(adapter=HaversineTravelTimeAdapter(speed_kmh=30.0))
    points = [("a", START), ("b", north(START, 1000)), ("c", north(START, 300))]
    pickups = sequencer.sequence(points, SCHOOL, base_time=T0)
    minutes = [(p.estimated_time - T0).total_seconds() / 60.0 for p in pickups]
    assert minutes[0] == 0.0
    assert minutes[1] == pytest.approx(0.6, abs=1e-6)
    assert minutes[2] == pytest.approx(2.0, abs=1e-6)


def test_ties_go_to_lowest_input_index():
    twin = north(START, 400)
    assert nearest_neighbour_order([START, twin, twin]) == [0, 1, 2]
    assert nearest_neighbour_order([START, north(START, 900), twin, twin]) == [0, 2, 3, 1]


def test_empty_and_single_stop():
    sequencer = PickupSequencer()
    assert sequencer.sequence([], SCHOOL) == []
    only = sequencer.sequence([("solo", START)], SCHOOL, base_time=T0)
    assert len(only) == 1 and only[0].estimated_time == T0


def test_every_family_appears_once():
    points = [(f"f{i}", north(START, 137 * ((i * 7) % 11))) for i in range(11)]
    pickups = PickupSequencer().sequence(points, SCHOOL)
    assert sorted(p.family_id for p in pickups) == sorted(f for f, _ in points)
    assert [p.sequence_order for p in pickups] == list(range(11))


def test_invalid_coordinates_rejected():
    with pytest.raises(ValidationError):
        PickupSequencer().sequence([("bad", Coordinate(lat=91.0, lng=0.0))], SCHOOL)
    with pytest.raises(ValidationError):
        PickupSequencer().sequence([("a", START)], Coordinate(lat=0.0, lng=181.0))


def test_route_distance_includes_final_leg():
    sequencer = PickupSequencer()
    pickups = sequencer.sequence([("a", START), ("b", north(START, -500))], SCHOOL)
    assert route_distance_m(pickups, SCHOOL) == pytest.approx(2000.0, rel=1e-6)
    assert sequencer.stops_with_destination(pickups, SCHOOL)[-1] == SCHOOL
    assert route_distance_m([], SCHOOL) == 0.0
