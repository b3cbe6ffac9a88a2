#!/usr/bin/env python3

from __future__ import annotations

import math
import tempfile
import threading
import time
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest import mock

from atcguard.contracts.errors import ComputationTimeout
from atcguard.contracts.events import INGEST_ACCEPTED, INGEST_INVALID, INGEST_STALE
from atcguard.contracts.traffic import FlightIntent, Sector, Track, Waypoint
from atcguard.engine.alerts import SYSTEM_TIMEOUT_ALERT_ID
from atcguard.engine.config import EngineConfig
from atcguard.engine.cycle import AirspaceEngine
from atcguard.telemetry.service import read_events


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
LON_PER_NM_AT_40 = 1.0 / (60.0 * math.cos(math.radians(40.0)))
SECTOR = Sector.from_bounds("S1", "Sector 1", 39.0, -75.0, 41.0, -73.0, 20, 50.0)


def _track(aircraft_id: str, lon: float, heading: float, sequence: int = 1, **overrides) -> Track:
    values = dict(
        aircraft_id=aircraft_id,
        callsign=aircraft_id,
        aircraft_type="B738",
        lat=40.0,
        lon=lon,
        altitude_ft=20000.0,
        ground_speed_kts=450.0,
        heading_deg=heading,
        vertical_rate_fpm=0.0,
        timestamp_utc="2026-03-01T12:00:00Z",
        sequence=sequence,
    )
    values.update(overrides)
    return Track(**values)


def _payload(aircraft_id: str, **overrides) -> dict:
    payload = {
        "aircraft_id": aircraft_id,
        "aircraft_type": "a320",
        "lat": 40.5,
        "lon": -74.5,
        "altitude_ft": 33000,
        "ground_speed_kts": 440,
        "heading_deg": 45,
        "vertical_rate_fpm": 0,
        "timestamp_utc": "2026-03-01T12:00:00Z",
        "sequence": 1,
    }
    payload.update(overrides)
    return payload


class AirspaceEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = AirspaceEngine(config=EngineConfig(cycle_deadline_s=5.0), sectors=[SECTOR])

    def tearDown(self) -> None:
        self.engine.close()

    def _load_head_on(self) -> None:
        self.engine.ingest(_track("AAL101", -74.0, 90.0))
        self.engine.ingest(_track("UAL202", -74.0 + 10.0 * LON_PER_NM_AT_40, 270.0))

    def test_ingest_reports_accepted_stale_and_invalid(self) -> None:
        self.assertEqual(self.engine.ingest(_track("AAL101", -74.0, 90.0)).status, INGEST_ACCEPTED)
        self.assertEqual(self.engine.ingest(_track("AAL101", -74.1, 90.0)).status, INGEST_STALE)
        invalid = self.engine.ingest(_track("BAD1", -74.0, 90.0, lat=95.0))
        self.assertEqual(invalid.status, INGEST_INVALID)
        self.assertTrue(any("lat" in item for item in invalid.details))
        self.assertEqual(self.engine.store.get("AAL101").lon, -74.0)
        self.assertIsNone(self.engine.store.get("BAD1"))

    def test_ingest_payload_counts_unparseable_updates(self) -> None:
        self.assertTrue(self.engine.ingest_payload(_payload("DAL303")).accepted)
        self.assertEqual(self.engine.store.get("DAL303").aircraft_type, "A320")
        missing = self.engine.ingest_payload({"aircraft_id": "DAL404", "sequence": 1})
        self.assertEqual(missing.status, INGEST_INVALID)
        self.assertEqual(missing.aircraft_id, "DAL404")
        self.assertEqual(self.engine.store.rejected_count, 1)
        self.assertEqual(self.engine.store.accepted_count, 1)

    def test_cycle_publishes_conflict_alert_and_stats(self) -> None:
        self._load_head_on()
        snapshot = self.engine.run_cycle(NOW)
        self.assertEqual(snapshot.generation, 1)
        self.assertEqual(snapshot.generated_at_utc, "2026-03-01T12:00:00Z")
        self.assertEqual([t.aircraft_id for t in snapshot.tracks], ["AAL101", "UAL202"])
        self.assertEqual(len(snapshot.conflicts), 1)
        conflict = snapshot.conflicts[0]
        self.assertEqual(conflict.conflict_id, "AAL101|UAL202")
        self.assertEqual(conflict.sector_id, "S1")
        self.assertTrue(conflict.has_validated_resolution)
        self.assertEqual([a.alert_id for a in snapshot.alerts], ["conflict:AAL101|UAL202"])
        self.assertEqual(snapshot.stats.total_aircraft, 2)
        self.assertEqual(snapshot.stats.total_conflicts, 1)
        self.assertEqual(snapshot.stats.accepted_updates, 2)
        self.assertIs(self.engine.snapshot(), snapshot)
        self.assertIs(self.engine.find_conflict("AAL101|UAL202"), conflict)
        self.assertIsNone(self.engine.find_conflict("missing"))

    def test_first_detection_time_is_carried_across_cycles(self) -> None:
        self._load_head_on()
        first = self.engine.run_cycle(NOW)
        second = self.engine.run_cycle(NOW + timedelta(seconds=1))
        self.assertEqual(second.generation, first.generation + 1)
        conflict = second.conflicts[0]
        self.assertEqual(conflict.first_detected_utc, "2026-03-01T12:00:00Z")
        self.assertEqual(conflict.last_updated_utc, "2026-03-01T12:00:01Z")

    def test_expired_tracks_are_pruned_before_detection(self) -> None:
        self._load_head_on()
        snapshot = self.engine.run_cycle(NOW + timedelta(seconds=600))
        self.assertEqual(snapshot.tracks, ())
        self.assertEqual(snapshot.conflicts, ())
        self.assertEqual(len(self.engine.store), 0)

    def test_acknowledgement_shows_in_next_snapshot(self) -> None:
        self._load_head_on()
        self.engine.run_cycle(NOW)
        self.assertIsNotNone(self.engine.acknowledge_alert("conflict:AAL101|UAL202"))
        self.assertIsNone(self.engine.acknowledge_alert("conflict:nope"))
        snapshot = self.engine.run_cycle(NOW)
        self.assertTrue(snapshot.alerts[0].acknowledged)

    def test_timeout_republishes_previous_data_with_system_alert(self) -> None:
        engine = AirspaceEngine(config=EngineConfig(cycle_deadline_s=0.05), sectors=[SECTOR])
        self.addCleanup(engine.close)
        engine.ingest(_track("AAL101", -74.0, 90.0))
        engine.ingest(_track("UAL202", -74.0 + 10.0 * LON_PER_NM_AT_40, 270.0))

        original_compute = engine._compute

        def slow_compute(*args, **kwargs):
            time.sleep(0.3)
            return original_compute(*args, **kwargs)

        with mock.patch.object(engine, "_compute", slow_compute):
            with self.assertRaises(ComputationTimeout):
                engine.run_cycle(NOW)

        timed_out = engine.snapshot()
        self.assertEqual(timed_out.generation, 1)
        self.assertEqual(timed_out.conflicts, ())
        self.assertEqual(timed_out.stats.timed_out_cycles, 1)
        self.assertEqual(timed_out.alerts[0].alert_id, SYSTEM_TIMEOUT_ALERT_ID)

        engine.config.cycle_deadline_s = 5.0
        recovered = engine.run_cycle(NOW)
        self.assertEqual(recovered.generation, 2)
        self.assertEqual(len(recovered.conflicts), 1)
        self.assertNotIn(SYSTEM_TIMEOUT_ALERT_ID, [a.alert_id for a in recovered.alerts])
        self.assertEqual(recovered.stats.timed_out_cycles, 1)

    def test_ingest_during_running_cycle_does_not_block_or_leak(self) -> None:
        self._load_head_on()
        entered = threading.Event()
        release = threading.Event()
        original_compute = self.engine._compute

        def gated_compute(*args, **kwargs):
            entered.set()
            release.wait(5.0)
            return original_compute(*args, **kwargs)

        published = []
        with mock.patch.object(self.engine, "_compute", gated_compute):
            cycle = threading.Thread(target=lambda: published.append(self.engine.run_cycle(NOW)))
            cycle.start()
            self.assertTrue(entered.wait(5.0))

            def _ingest_more() -> None:
                self.engine.ingest(_track("DAL303", -73.5, 0.0))
                self.engine.ingest(_track("AAL101", -74.05, 90.0, sequence=2))

            writer = threading.Thread(target=_ingest_more)
            writer.start()
            writer.join(timeout=1.0)
            self.assertFalse(writer.is_alive())
            release.set()
            cycle.join(timeout=5.0)

        snapshot = published[0]
        self.assertEqual([t.aircraft_id for t in snapshot.tracks], ["AAL101", "UAL202"])
        self.assertEqual(snapshot.tracks[0].sequence, 1)
        self.assertEqual(snapshot.tracks[0].lon, -74.0)
        self.assertEqual(self.engine.store.get("DAL303").lon, -73.5)
        self.assertEqual(self.engine.store.get("AAL101").sequence, 2)

    def test_snapshot_carries_sector_assignments(self) -> None:
        self._load_head_on()
        first = self.engine.run_cycle(NOW)
        self.assertEqual([a.aircraft_id for a in first.sector_assignments], ["AAL101", "UAL202"])
        self.assertEqual({a.assigned_sector_id for a in first.sector_assignments}, {"S1"})
        self.assertEqual({a.reason for a in first.sector_assignments}, {"initial_assignment"})
        second = self.engine.run_cycle(NOW + timedelta(seconds=1))
        self.assertEqual({a.reason for a in second.sector_assignments}, {"optimization"})
        self.assertEqual({a.previous_sector_id for a in second.sector_assignments}, {"S1"})

    def test_cleared_intent_no_longer_shapes_prediction(self) -> None:
        self.engine.ingest(_track("AAA", -74.0, 90.0))
        self.engine.ingest(_track("BBB", -74.0, 180.0, lat=40.5))
        route = FlightIntent(aircraft_id="AAA", waypoints=(Waypoint(name="N40", lat=40.0 + 40.0 / 60.0, lon=-74.0),))
        self.engine.ingest_intent(route)
        self.assertEqual([c.conflict_id for c in self.engine.run_cycle(NOW).conflicts], ["AAA|BBB"])
        self.assertTrue(self.engine.clear_intent("AAA"))
        self.assertFalse(self.engine.clear_intent("AAA"))
        self.assertEqual(self.engine.run_cycle(NOW).conflicts, ())

    def test_subscriber_receives_cycle_deltas(self) -> None:
        subscription = self.engine.subscribe()
        self._load_head_on()
        self.engine.run_cycle(NOW)
        delta = subscription.get(timeout=1.0)
        self.assertEqual(delta.generation, 1)
        self.assertEqual([c["conflict_id"] for c in delta.conflicts_upserted], ["AAL101|UAL202"])
        subscription.close()
        self.assertEqual(self.engine.publisher.subscriber_count, 0)
        self.engine.run_cycle(NOW)

    def test_cycle_events_written_to_telemetry_dir(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            engine = AirspaceEngine(sectors=[SECTOR], telemetry_dir=Path(tmp_dir))
            self.addCleanup(engine.close)
            engine.ingest(_track("AAL101", -74.0, 90.0))
            engine.run_cycle(NOW)
            events = read_events(Path(tmp_dir), "cycle_completed")
            self.assertEqual(len(events), 1)
            self.assertEqual(events[0]["payload"]["generation"], 1)
            self.assertEqual(events[0]["payload"]["aircraft"], 1)

    def test_background_loop_publishes_snapshots(self) -> None:
        engine = AirspaceEngine(config=EngineConfig(cycle_period_s=0.05), sectors=[SECTOR])
        self.addCleanup(engine.close)
        engine.start()
        self.assertTrue(engine.running)
        self.assertIsNotNone(engine.publisher.wait_for_generation(2, timeout=5.0))
        engine.stop()
        self.assertFalse(engine.running)


if __name__ == "__main__":
    unittest.main()
