#!/usr/bin/env python3

from __future__ import annotations

import unittest
from dataclasses import replace
from datetime import datetime, timezone

from atcguard.airspace.track_store import TrackStore
from atcguard.contracts.errors import StaleUpdate, ValidationError
from atcguard.contracts.traffic import FlightIntent, Track, Waypoint


def _track(aircraft_id: str = "AAL1", sequence: int = 1, **overrides) -> Track:
    base = Track(
        aircraft_id=aircraft_id,
        callsign=aircraft_id,
        aircraft_type="B738",
        lat=40.0,
        lon=-74.0,
        altitude_ft=20000.0,
        ground_speed_kts=450.0,
        heading_deg=90.0,
        vertical_rate_fpm=0.0,
        timestamp_utc="2026-03-01T12:00:00Z",
        sequence=sequence,
    )
    return replace(base, **overrides)


class TrackStoreTests(unittest.TestCase):
    def test_newer_sequence_replaces_track(self) -> None:
        store = TrackStore()
        store.upsert(_track(sequence=1))
        store.upsert(_track(sequence=2, altitude_ft=21000.0))
        self.assertEqual(store.get("AAL1").altitude_ft, 21000.0)
        self.assertEqual(store.accepted_count, 2)

    def test_older_and_equal_sequence_are_stale(self) -> None:
        store = TrackStore()
        store.upsert(_track(sequence=5))
        with self.assertRaises(StaleUpdate) as ctx:
            store.upsert(_track(sequence=4, altitude_ft=1000.0))
        self.assertEqual(ctx.exception.stored_sequence, 5)
        self.assertEqual(ctx.exception.offered_sequence, 4)
        with self.assertRaises(StaleUpdate):
            store.upsert(_track(sequence=5, altitude_ft=1000.0))
        self.assertEqual(store.get("AAL1").altitude_ft, 20000.0)
        self.assertEqual(store.stale_count, 2)

    def test_invalid_track_never_enters_store(self) -> None:
        store = TrackStore(ceiling_ft=60000.0)
        with self.assertRaises(ValidationError) as ctx:
            store.upsert(_track(lat=95.0, altitude_ft=70000.0))
        self.assertEqual(len(ctx.exception.details), 2)
        self.assertIsNone(store.get("AAL1"))
        self.assertEqual(store.rejected_count, 1)
        self.assertEqual(len(store), 0)

    def test_non_finite_values_rejected(self) -> None:
        store = TrackStore()
        with self.assertRaises(ValidationError):
            store.upsert(_track(ground_speed_kts=float("nan")))

    def test_snapshot_is_point_in_time(self) -> None:
        store = TrackStore()
        store.upsert(_track("AAL1"))
        view = store.snapshot()
        store.upsert(_track("UAL2"))
        store.upsert(_track("AAL1", sequence=2, altitude_ft=30000.0))
        self.assertEqual(sorted(view.keys()), ["AAL1"])
        self.assertEqual(view["AAL1"].altitude_ft, 20000.0)
        with self.assertRaises(TypeError):
            view["X"] = _track("X")  # type: ignore[index]

    def test_prune_drops_expired_tracks_and_intents(self) -> None:
        store = TrackStore()
        store.upsert(_track("OLD1", timestamp_utc="2026-03-01T11:55:00Z"))
        store.upsert(_track("NEW1", timestamp_utc="2026-03-01T11:59:30Z"))
        store.set_intent(FlightIntent(aircraft_id="OLD1", waypoints=(Waypoint("WP1", 41.0, -74.0),)))
        removed = store.prune(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc), max_age_s=120.0)
        self.assertEqual(removed, ["OLD1"])
        self.assertIsNone(store.get("OLD1"))
        self.assertIsNotNone(store.get("NEW1"))
        self.assertNotIn("OLD1", store.intents_snapshot())

    def test_invalid_intent_rejected(self) -> None:
        store = TrackStore()
        with self.assertRaises(ValidationError):
            store.set_intent(FlightIntent(aircraft_id="AAL1", phase="taxi"))


if __name__ == "__main__":
    unittest.main()
