#!/usr/bin/env python3

from __future__ import annotations

import threading
import unittest

from atcguard.airspace.balancing import assign_aircraft, assign_sectors, sector_score
from atcguard.airspace.workload import aircraft_complexities, evaluate
from atcguard.contracts.errors import ComputationTimeout
from atcguard.contracts.events import (
    ASSIGN_INITIAL,
    ASSIGN_LOAD_BALANCING,
    ASSIGN_OPTIMIZATION,
    PRIORITY_HIGH,
    PRIORITY_LOW,
    PRIORITY_MEDIUM,
)
from atcguard.contracts.traffic import STATUS_CRITICAL, UNSECTORED_ID, Sector, Track
from atcguard.engine.config import EngineConfig


WEST = Sector.from_bounds("WEST", "West", 39.0, -76.0, 41.0, -75.0, max_aircraft=10, max_complexity=1000.0)
EAST = Sector.from_bounds("EAST", "East", 39.0, -75.0, 41.0, -74.0, max_aircraft=10, max_complexity=1000.0)


def _track(aircraft_id: str, lat: float, lon: float, aircraft_type: str = "B738") -> Track:
    return Track(
        aircraft_id=aircraft_id,
        callsign=aircraft_id,
        aircraft_type=aircraft_type,
        lat=lat,
        lon=lon,
        altitude_ft=30000.0,
        ground_speed_kts=420.0,
        heading_deg=90.0,
        vertical_rate_fpm=0.0,
        timestamp_utc="2026-03-01T12:00:00Z",
        sequence=1,
    )


def _crowded_west(extra_east: int = 0) -> dict:
    """Ten aircraft in WEST: five deep inside, five a couple of miles from EAST."""

    fleet = {f"DEEP{idx}": _track(f"DEEP{idx}", 39.2 + 0.3 * idx, -75.8) for idx in range(5)}
    for idx in range(5, 10):
        aircraft_type = "B77W" if idx == 9 else "B738"
        fleet[f"EDGE{idx}"] = _track(f"EDGE{idx}", 39.2 + 0.3 * (idx - 5), -75.05, aircraft_type)
    for idx in range(extra_east):
        fleet[f"EAST{idx}"] = _track(f"EAST{idx}", 39.2 + 0.2 * idx, -74.5)
    return fleet


def _assign(fleet: dict, previous=None, config=None):
    cfg = config or EngineConfig()
    evaluated = evaluate(fleet, [WEST, EAST], config=cfg)
    result = assign_sectors(fleet, evaluated, aircraft_complexities(fleet, config=cfg), previous=previous, config=cfg)
    return {item.aircraft_id: item for item in result}


class SectorBalancingTests(unittest.TestCase):
    def test_initial_assignment_follows_polygon(self) -> None:
        assignments = _assign({"DEEP0": _track("DEEP0", 40.0, -75.8), "EAST0": _track("EAST0", 40.0, -74.5)})
        self.assertEqual(assignments["DEEP0"].assigned_sector_id, "WEST")
        self.assertEqual(assignments["EAST0"].assigned_sector_id, "EAST")
        self.assertEqual(assignments["DEEP0"].reason, ASSIGN_INITIAL)
        self.assertEqual(assignments["DEEP0"].priority, PRIORITY_LOW)
        self.assertFalse(assignments["DEEP0"].is_sector_change)

    def test_overloaded_sector_sheds_edge_aircraft_until_normal(self) -> None:
        fleet = _crowded_west()
        self.assertEqual(evaluate(fleet, [WEST, EAST])[1].status, STATUS_CRITICAL)
        assignments = _assign(fleet)
        moved = sorted(aid for aid, item in assignments.items() if item.reason == ASSIGN_LOAD_BALANCING)
        self.assertEqual(moved, ["EDGE5", "EDGE6", "EDGE9"])
        for aircraft_id in moved:
            item = assignments[aircraft_id]
            self.assertEqual(item.assigned_sector_id, "EAST")
            self.assertEqual(item.previous_sector_id, "WEST")
            self.assertEqual(item.priority, PRIORITY_MEDIUM)
            self.assertTrue(item.is_sector_change)
        for aircraft_id in ("DEEP0", "DEEP4", "EDGE7", "EDGE8"):
            self.assertEqual(assignments[aircraft_id].assigned_sector_id, "WEST")

    def test_rebalanced_aircraft_are_kept_next_cycle(self) -> None:
        fleet = _crowded_west()
        first = _assign(fleet)
        previous = {aid: item.assigned_sector_id for aid, item in first.items()}
        second = _assign(fleet, previous=previous)
        self.assertEqual(second["EDGE9"].assigned_sector_id, "EAST")
        self.assertEqual(second["EDGE9"].reason, ASSIGN_OPTIMIZATION)
        self.assertFalse(second["EDGE9"].is_sector_change)
        self.assertEqual(sum(1 for item in second.values() if item.is_sector_change), 0)
        self.assertEqual(sum(1 for item in second.values() if item.assigned_sector_id == "EAST"), 3)

    def test_receiver_is_never_pushed_out_of_normal(self) -> None:
        assignments = _assign(_crowded_west(extra_east=7))
        self.assertFalse([item for item in assignments.values() if item.reason == ASSIGN_LOAD_BALANCING])

    def test_small_utilization_gap_is_left_alone(self) -> None:
        config = EngineConfig(rebalance_threshold=0.5)
        assignments = _assign(_crowded_west(extra_east=6), config=config)
        self.assertFalse([item for item in assignments.values() if item.reason == ASSIGN_LOAD_BALANCING])

    def test_outside_every_sector(self) -> None:
        near_west = _track("NEAR", 41.08, -75.5)
        far = _track("FAR", 45.0, -75.5)
        self.assertEqual(assign_aircraft(near_west, [WEST, EAST], 1.5).assigned_sector_id, "WEST")
        self.assertEqual(assign_aircraft(far, [WEST, EAST], 1.5).assigned_sector_id, UNSECTORED_ID)

    def test_high_complexity_raises_priority(self) -> None:
        item = assign_aircraft(_track("HVY", 40.0, -75.5), [WEST], 8.0)
        self.assertEqual(item.priority, PRIORITY_HIGH)
        self.assertEqual(item.to_dict()["priority_label"], "high")

    def test_score_prefers_quieter_sector(self) -> None:
        busy = evaluate(_crowded_west(), [WEST])[0]
        self.assertGreater(sector_score(WEST, 1.5), sector_score(busy, 1.5))

    def test_cancelled_cycle_stops_assignment(self) -> None:
        cancel_event = threading.Event()
        cancel_event.set()
        fleet = _crowded_west()
        with self.assertRaises(ComputationTimeout):
            assign_sectors(fleet, [WEST, EAST], aircraft_complexities(fleet), cancel_event=cancel_event)
        with self.assertRaises(ComputationTimeout):
            evaluate(fleet, [WEST, EAST], cancel_event=cancel_event)


if __name__ == "__main__":
    unittest.main()
