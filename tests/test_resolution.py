#!/usr/bin/env python3

from __future__ import annotations

import math
import unittest
from dataclasses import replace
from datetime import datetime, timezone

from atcguard.airspace.conflict import assess_pair, detect
from atcguard.airspace.resolution import apply_maneuver, apply_suggestion, maneuver_intent, propose, select_resolution
from atcguard.contracts.errors import ResolutionInfeasible
from atcguard.contracts.events import MANEUVER_ALTITUDE, MANEUVER_HEADING, MANEUVER_SPEED, MANEUVER_TIER
from atcguard.contracts.traffic import FlightIntent, PerformanceConstraints, Track, Waypoint
from atcguard.engine.config import EngineConfig


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
LON_PER_NM_AT_40 = 1.0 / (60.0 * math.cos(math.radians(40.0)))
LEVEL_LOCKED = PerformanceConstraints(max_speed_kts=480.0, min_speed_kts=140.0, max_altitude_ft=20000.0, min_altitude_ft=20000.0)


def _track(aircraft_id: str, east_nm: float, heading: float, **overrides) -> Track:
    values = dict(
        aircraft_id=aircraft_id,
        callsign=aircraft_id,
        aircraft_type="B738",
        lat=40.0,
        lon=-74.0 + east_nm * LON_PER_NM_AT_40,
        altitude_ft=20000.0,
        ground_speed_kts=450.0,
        heading_deg=heading,
        vertical_rate_fpm=0.0,
        timestamp_utc="2026-03-01T12:00:00Z",
        sequence=1,
    )
    values.update(overrides)
    return Track(**values)


def _only_conflict(tracks):
    conflicts = detect({t.aircraft_id: t for t in tracks}, [], now_utc=NOW)
    assert len(conflicts) == 1, conflicts
    return conflicts[0]


class ResolutionAdvisorTests(unittest.TestCase):
    def test_head_on_top_suggestion_is_one_level_climb(self) -> None:
        a = _track("AAL101", 0.0, 90.0)
        b = _track("UAL202", 10.0, 270.0)
        conflict = _only_conflict([a, b])
        snapshot = {a.aircraft_id: a, b.aircraft_id: b}
        suggestions = propose(conflict, snapshot)
        self.assertTrue(suggestions)
        top = suggestions[0]
        self.assertEqual(top.priority, 1)
        self.assertEqual(top.maneuver, MANEUVER_ALTITUDE)
        self.assertEqual(top.aircraft_id, "AAL101")
        self.assertEqual(top.magnitude, 1000.0)
        self.assertTrue(top.resolves_without_new_conflict)
        self.assertIn("Climb AAL101", top.description)

        climbed = apply_suggestion(snapshot[top.aircraft_id], top)
        check = assess_pair(climbed, b, EngineConfig())
        self.assertFalse(check.violating)
        self.assertGreaterEqual(min(s.vertical_ft for s in check.timeline), 1000.0)
        self.assertEqual(snapshot["AAL101"].altitude_ft, 20000.0)

    def test_validated_suggestions_are_sound(self) -> None:
        a = _track("AAL101", 0.0, 90.0)
        b = _track("UAL202", 10.0, 270.0)
        c = _track("CCC303", 40.0, 180.0, lat=40.3, altitude_ft=21000.0)
        conflict = _only_conflict([a, b])
        snapshot = {t.aircraft_id: t for t in (a, b, c)}
        cfg = EngineConfig()
        suggestions = propose(conflict, snapshot, config=cfg)
        self.assertEqual([s.priority for s in suggestions], list(range(1, len(suggestions) + 1)))
        tiers = [MANEUVER_TIER[s.maneuver] for s in suggestions if s.resolves_without_new_conflict]
        self.assertEqual(tiers, sorted(tiers))
        for suggestion in suggestions:
            if not suggestion.resolves_without_new_conflict:
                continue
            moved = apply_suggestion(snapshot[suggestion.aircraft_id], suggestion)
            for other in snapshot.values():
                if other.aircraft_id == moved.aircraft_id:
                    continue
                self.assertFalse(assess_pair(moved, other, cfg).violating, suggestion)

    def test_maneuver_that_creates_new_conflict_is_rejected(self) -> None:
        a = _track("AAL101", 0.0, 90.0)
        b = _track("UAL202", 10.0, 270.0)
        above = _track("CCC303", 3.0, 90.0, altitude_ft=21000.0)
        conflict = _only_conflict([a, b])
        snapshot = {t.aircraft_id: t for t in (a, b, above)}
        suggestions = propose(conflict, snapshot)
        top = suggestions[0]
        self.assertEqual(top.maneuver, MANEUVER_ALTITUDE)
        self.assertEqual(top.aircraft_id, "AAL101")
        self.assertEqual(top.magnitude, -1000.0)
        self.assertTrue(top.resolves_without_new_conflict)

    def test_speed_tier_when_altitude_is_locked(self) -> None:
        a = _track("AAL101", 0.0, 90.0, ground_speed_kts=360.0)
        b = _track("UAL202", 7.0, 90.0, ground_speed_kts=300.0)
        conflict = _only_conflict([a, b])
        snapshot = {a.aircraft_id: a, b.aircraft_id: b}
        constraints = {"AAL101": LEVEL_LOCKED, "UAL202": LEVEL_LOCKED}
        suggestions = propose(conflict, snapshot, constraints=constraints)
        top = suggestions[0]
        self.assertEqual(top.maneuver, MANEUVER_SPEED)
        self.assertEqual(top.aircraft_id, "AAL101")
        self.assertEqual(top.magnitude, -40.0)
        self.assertTrue(top.resolves_without_new_conflict)
        self.assertNotIn(MANEUVER_ALTITUDE, [s.maneuver for s in suggestions])
        self.assertEqual(select_resolution(replace(conflict, resolutions=tuple(suggestions))), top)

    def test_no_validated_candidate_returns_empty_list(self) -> None:
        a = _track("AAL101", 0.0, 90.0)
        b = _track("UAL202", 0.0, 0.0)
        conflict = _only_conflict([a, b])
        snapshot = {a.aircraft_id: a, b.aircraft_id: b}
        constraints = {"AAL101": LEVEL_LOCKED, "UAL202": LEVEL_LOCKED}
        self.assertEqual(propose(conflict, snapshot, constraints=constraints), [])
        with self.assertRaises(ResolutionInfeasible) as ctx:
            select_resolution(conflict)
        self.assertEqual(ctx.exception.conflict_id, "AAL101|UAL202")

    def test_apply_maneuver_is_hypothetical(self) -> None:
        a = _track("AAL101", 0.0, 350.0, vertical_rate_fpm=1500.0)
        turned = apply_maneuver(a, MANEUVER_HEADING, 20.0)
        self.assertEqual(turned.heading_deg, 10.0)
        leveled = apply_maneuver(a, MANEUVER_ALTITUDE, -2000.0)
        self.assertEqual(leveled.altitude_ft, 18000.0)
        self.assertEqual(leveled.vertical_rate_fpm, 0.0)
        slowed = apply_maneuver(a, MANEUVER_SPEED, -500.0)
        self.assertEqual(slowed.ground_speed_kts, 0.0)
        self.assertEqual(a.heading_deg, 350.0)
        with self.assertRaises(ValueError):
            apply_maneuver(a, "teleport", 1.0)


    def test_route_is_kept_when_validating_speed_changes(self) -> None:
        a = _track("AAA", 0.0, 90.0)
        b = _track("BBB", 0.0, 180.0, lat=40.0 + 30.0 / 60.0)
        route = FlightIntent(aircraft_id="AAA", waypoints=(Waypoint(name="N40", lat=40.0 + 40.0 / 60.0, lon=-74.0),))
        intents = {"AAA": route}
        snapshot = {"AAA": a, "BBB": b}
        conflicts = detect(snapshot, [], intents=intents, now_utc=NOW)
        self.assertEqual([c.conflict_id for c in conflicts], ["AAA|BBB"])
        constraints = {"AAA": LEVEL_LOCKED, "BBB": LEVEL_LOCKED}
        cfg = EngineConfig()

        # Flown as a straight line the speed change looks clear.
        self.assertFalse(assess_pair(apply_maneuver(a, MANEUVER_SPEED, 20.0), b, cfg).violating)

        suggestions = propose(conflicts[0], snapshot, constraints=constraints, config=cfg, intents=intents)
        self.assertTrue(suggestions)
        validated = [s for s in suggestions if s.resolves_without_new_conflict]
        self.assertNotIn(MANEUVER_SPEED, [s.maneuver for s in validated])
        top = suggestions[0]
        self.assertEqual(top.maneuver, MANEUVER_HEADING)
        self.assertEqual(top.aircraft_id, "AAA")
        self.assertEqual(top.magnitude, 5.0)
        for suggestion in validated:
            mover = snapshot[suggestion.aircraft_id]
            other = b if suggestion.aircraft_id == "AAA" else a
            flown = maneuver_intent(intents.get(suggestion.aircraft_id), suggestion.maneuver, suggestion.magnitude)
            check = assess_pair(apply_suggestion(mover, suggestion), other, cfg, flown, intents.get(other.aircraft_id))
            self.assertFalse(check.violating)

    def test_maneuver_intent_per_maneuver(self) -> None:
        route = FlightIntent(
            aircraft_id="AAL101",
            waypoints=(
                Waypoint(name="WP1", lat=40.1, lon=-73.9, target_altitude_ft=21000.0, target_speed_kts=400.0),
                Waypoint(name="WP2", lat=40.2, lon=-73.8),
            ),
        )
        climbed = maneuver_intent(route, MANEUVER_ALTITUDE, 1000.0)
        self.assertEqual(climbed.waypoints[0].target_altitude_ft, 22000.0)
        self.assertEqual(climbed.waypoints[0].target_speed_kts, 400.0)
        self.assertIsNone(climbed.waypoints[1].target_altitude_ft)
        slowed = maneuver_intent(route, MANEUVER_SPEED, -20.0)
        self.assertEqual(slowed.waypoints[0].target_speed_kts, 380.0)
        self.assertEqual(slowed.waypoints[0].lat, 40.1)
        self.assertIsNone(maneuver_intent(route, MANEUVER_HEADING, 10.0))
        self.assertIsNone(maneuver_intent(None, MANEUVER_SPEED, 20.0))
        with self.assertRaises(ValueError):
            maneuver_intent(route, "teleport", 1.0)


if __name__ == "__main__":
    unittest.main()
