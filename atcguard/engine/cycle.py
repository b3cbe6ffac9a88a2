#!/usr/bin/env python3
"""Cycle-driven airspace engine: ingest, detect, advise, evaluate, alert, publish."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from atcguard.airspace.balancing import assign_sectors
from atcguard.airspace.conflict import detect
from atcguard.airspace.partition import sector_members
from atcguard.airspace.resolution import propose
from atcguard.airspace.stats import compute_cycle_stats
from atcguard.airspace.track_store import TrackStore
from atcguard.airspace.validation import parse_track, validate_sectors
from atcguard.airspace.workload import aircraft_complexities, evaluate
from atcguard.contracts.errors import ComputationTimeout, StaleUpdate, ValidationError
from atcguard.contracts.events import (
    INGEST_ACCEPTED,
    INGEST_INVALID,
    INGEST_STALE,
    Alert,
    Conflict,
    CycleStats,
    EngineSnapshot,
    IngestResult,
    SectorAssignment,
)
from atcguard.contracts.traffic import FlightIntent, Sector, Track
from atcguard.engine.alerts import AlertDispatcher
from atcguard.engine.config import EngineConfig
from atcguard.engine.publisher import SnapshotPublisher, Subscription
from atcguard.telemetry.service import emit_event
from atcguard.telemetry.tracing import format_trace_ids, get_tracer


LOGGER = logging.getLogger(__name__)


def _iso_utc(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class AirspaceEngine:
    """Owns the track store and runs one consistent detection cycle at a time.

    Ingestion only touches the store, so it never waits on a running cycle.
    Each cycle works on one immutable store snapshot; its result is published
    whole, or discarded when the cycle misses its deadline.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        sectors: Sequence[Sector] = (),
        telemetry_dir: Optional[Path] = None,
    ) -> None:
        self.config = (config or EngineConfig()).validate()
        self.store = TrackStore(ceiling_ft=self.config.altitude_ceiling_ft)
        self.dispatcher = AlertDispatcher()
        self.publisher = SnapshotPublisher(subscriber_queue_size=self.config.subscriber_queue_size)
        self._sectors: Tuple[Sector, ...] = tuple(validate_sectors(sectors))
        if telemetry_dir is None and self.config.telemetry_dir:
            telemetry_dir = Path(self.config.telemetry_dir)
        self._telemetry_dir = telemetry_dir
        self._cycle_lock = threading.Lock()
        self._generation = 0
        self._timed_out_cycles = 0
        self._assigned_sectors: Dict[str, str] = {}
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="atcguard-compute")
        self._tracer = get_tracer(__name__)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # Ingestion surface

    def ingest(self, track: Track) -> IngestResult:
        try:
            self.store.upsert(track)
        except ValidationError as err:
            LOGGER.info("Rejected track %s: %s", track.aircraft_id, "; ".join(err.details))
            return IngestResult(
                aircraft_id=str(track.aircraft_id or ""),
                status=INGEST_INVALID,
                sequence=track.sequence if isinstance(track.sequence, int) else None,
                details=tuple(err.details),
            )
        except StaleUpdate as err:
            LOGGER.debug("%s", err)
            return IngestResult(
                aircraft_id=track.aircraft_id,
                status=INGEST_STALE,
                sequence=track.sequence,
                details=(str(err),),
            )
        return IngestResult(aircraft_id=track.aircraft_id, status=INGEST_ACCEPTED, sequence=track.sequence)

    def ingest_payload(self, payload: Dict[str, Any]) -> IngestResult:
        try:
            track = parse_track(payload, ceiling_ft=self.config.altitude_ceiling_ft)
        except ValidationError as err:
            self.store.record_rejected()
            aircraft_id = str(payload.get("aircraft_id") or "") if isinstance(payload, dict) else ""
            return IngestResult(aircraft_id=aircraft_id, status=INGEST_INVALID, details=tuple(err.details))
        return self.ingest(track)

    def ingest_intent(self, intent: FlightIntent) -> FlightIntent:
        return self.store.set_intent(intent)

    def clear_intent(self, aircraft_id: str) -> bool:
        cleared = self.store.clear_intent(aircraft_id)
        if cleared:
            LOGGER.info("Cleared intent for %s", aircraft_id)
        return cleared

    def set_sectors(self, sectors: Sequence[Sector]) -> Tuple[Sector, ...]:
        validated = tuple(validate_sectors(sectors))
        self._sectors = validated
        LOGGER.info("Sector configuration replaced: %d sectors", len(validated))
        return validated

    def sectors(self) -> Tuple[Sector, ...]:
        return self._sectors

    def acknowledge_alert(self, alert_id: str) -> Optional[Alert]:
        return self.dispatcher.acknowledge(alert_id)

    # Consumer surface

    def snapshot(self, timeout: Optional[float] = None) -> Optional[EngineSnapshot]:
        return self.publisher.current(timeout=timeout)

    def subscribe(self) -> Subscription:
        return self.publisher.subscribe()

    def find_conflict(self, conflict_id: str) -> Optional[Conflict]:
        current = self.publisher.current()
        if current is None:
            return None
        for conflict in current.conflicts:
            if conflict.conflict_id == conflict_id:
                return conflict
        return None

    # Cycle

    def _compute(
        self,
        tracks: Mapping[str, Track],
        intents: Mapping[str, FlightIntent],
        sectors: Sequence[Sector],
        now: datetime,
        cancel_event: threading.Event,
    ) -> Tuple[List[Conflict], List[Sector], List[SectorAssignment]]:
        cfg = self.config
        with self._tracer.start_as_current_span("atcguard.detect") as span:
            conflicts = detect(
                tracks,
                sectors,
                config=cfg,
                intents=intents,
                now_utc=now,
                cancel_event=cancel_event,
            )
            span.set_attribute("atcguard.conflicts", len(conflicts))

        members = sector_members(tracks, sectors, cancel_event=cancel_event, deadline_s=cfg.cycle_deadline_s)
        advised: List[Conflict] = []
        with self._tracer.start_as_current_span("atcguard.propose"):
            for conflict in conflicts:
                if cancel_event.is_set():
                    raise ComputationTimeout(cfg.cycle_deadline_s)
                neighbors = members.get(conflict.sector_id) or list(tracks.keys())
                try:
                    suggestions = propose(conflict, tracks, config=cfg, intents=intents, neighbors=neighbors)
                except (ValueError, TypeError, ArithmeticError) as err:
                    LOGGER.warning("Resolution skipped for %s: %s", conflict.conflict_id, err)
                    suggestions = []
                advised.append(replace(conflict, resolutions=tuple(suggestions)))

        if cancel_event.is_set():
            raise ComputationTimeout(cfg.cycle_deadline_s)
        with self._tracer.start_as_current_span("atcguard.evaluate"):
            evaluated = evaluate(tracks, sectors, advised, cfg, cancel_event=cancel_event)

        if cancel_event.is_set():
            raise ComputationTimeout(cfg.cycle_deadline_s)
        with self._tracer.start_as_current_span("atcguard.balance") as span:
            assignments = assign_sectors(
                tracks,
                evaluated,
                aircraft_complexities(tracks, advised, cfg),
                previous=dict(self._assigned_sectors),
                config=cfg,
                cancel_event=cancel_event,
            )
            span.set_attribute("atcguard.handoffs", sum(1 for item in assignments if item.is_sector_change))
        return advised, evaluated, assignments

    def _carry_first_detected(self, conflicts: Sequence[Conflict]) -> List[Conflict]:
        previous = self.publisher.current()
        if previous is None:
            return list(conflicts)
        first_seen = {item.conflict_id: item.first_detected_utc for item in previous.conflicts}
        return [
            replace(item, first_detected_utc=first_seen[item.conflict_id]) if item.conflict_id in first_seen else item
            for item in conflicts
        ]

    def _counters(self) -> Dict[str, int]:
        return {
            "accepted_updates": self.store.accepted_count,
            "stale_updates": self.store.stale_count,
            "rejected_updates": self.store.rejected_count,
            "timed_out_cycles": self._timed_out_cycles,
        }

    def _emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        if self._telemetry_dir is None:
            return
        try:
            emit_event(self._telemetry_dir, event_type, payload)
        except OSError as err:
            LOGGER.warning("Telemetry write failed: %s", err)

    def _publish_timeout(self, now: datetime, error: ComputationTimeout) -> EngineSnapshot:
        self._timed_out_cycles += 1
        self.dispatcher.raise_system_alert(f"Detection cycle discarded: {error}", now)
        previous = self.publisher.current()
        if previous is not None:
            stats = replace(previous.stats, timed_out_cycles=self._timed_out_cycles)
            tracks, conflicts, sectors = previous.tracks, previous.conflicts, previous.sectors
            assignments = previous.sector_assignments
        else:
            stats = CycleStats(**self._counters())
            tracks, conflicts, sectors = (), (), ()
            assignments = ()
        self._generation += 1
        snapshot = EngineSnapshot(
            generation=self._generation,
            generated_at_utc=previous.generated_at_utc if previous is not None else _iso_utc(now),
            tracks=tracks,
            conflicts=conflicts,
            sectors=sectors,
            alerts=self.dispatcher.current(),
            stats=stats,
            sector_assignments=assignments,
        )
        self.publisher.publish(snapshot)
        self._emit(
            "cycle_timeout",
            {
                "generation": snapshot.generation,
                "deadline_s": error.deadline_s,
                "elapsed_s": error.elapsed_s,
                "timed_out_cycles": self._timed_out_cycles,
            },
        )
        return snapshot

    def run_cycle(self, now: Optional[datetime] = None) -> EngineSnapshot:
        """Run one detection cycle and publish its snapshot.

        Raises ComputationTimeout when the cycle overruns ``cycle_deadline_s``;
        the prior snapshot's data is republished with a system alert first.
        """

        with self._cycle_lock:
            now = now or datetime.now(timezone.utc)
            started = time.perf_counter()
            self.store.prune(now, self.config.track_timeout_s)
            tracks = self.store.snapshot()
            intents = self.store.intents_snapshot()
            sectors = self._sectors
            cancel_event = threading.Event()

            with self._tracer.start_as_current_span("atcguard.cycle") as span:
                span.set_attribute("atcguard.aircraft", len(tracks))
                span.set_attribute("atcguard.sectors", len(sectors))
                future = self._executor.submit(self._compute, tracks, intents, sectors, now, cancel_event)
                try:
                    conflicts, evaluated, assignments = future.result(timeout=self.config.cycle_deadline_s)
                except (FuturesTimeout, ComputationTimeout):
                    cancel_event.set()
                    error = ComputationTimeout(self.config.cycle_deadline_s, time.perf_counter() - started)
                    span.record_exception(error)
                    LOGGER.warning("%s; retaining previous snapshot", error)
                    self._publish_timeout(now, error)
                    raise error

                conflicts = self._carry_first_detected(conflicts)
                self.dispatcher.clear_system_alert()
                alerts = self.dispatcher.dispatch(conflicts, evaluated, now)
                duration_ms = (time.perf_counter() - started) * 1000.0
                stats = compute_cycle_stats(
                    total_aircraft=len(tracks),
                    conflicts=conflicts,
                    sectors=evaluated,
                    cycle_duration_ms=duration_ms,
                    **self._counters(),
                )
                self._generation += 1
                snapshot = EngineSnapshot(
                    generation=self._generation,
                    generated_at_utc=_iso_utc(now),
                    tracks=tuple(tracks[aircraft_id] for aircraft_id in sorted(tracks)),
                    conflicts=tuple(conflicts),
                    sectors=tuple(evaluated),
                    alerts=alerts,
                    stats=stats,
                    sector_assignments=tuple(assignments),
                )
                self.publisher.publish(snapshot)
                self._assigned_sectors = {item.aircraft_id: item.assigned_sector_id for item in assignments}
                span.set_attribute("atcguard.generation", snapshot.generation)
                span.set_attribute("atcguard.conflicts", len(conflicts))
                trace_ids = format_trace_ids(span)

        LOGGER.info(
            "Cycle %d: aircraft=%d conflicts=%d alerts=%d duration_ms=%.1f",
            snapshot.generation,
            len(tracks),
            len(conflicts),
            len(alerts),
            duration_ms,
        )
        self._emit(
            "cycle_completed",
            {
                "generation": snapshot.generation,
                "aircraft": len(tracks),
                "conflicts": len(conflicts),
                "unresolved_conflicts": stats.unresolved_conflicts,
                "alerts": len(alerts),
                "duration_ms": round(duration_ms, 3),
                **trace_ids,
            },
        )
        return snapshot

    # Scheduling

    def _run_loop(self) -> None:
        period = float(self.config.cycle_period_s)
        while not self._stop_event.is_set():
            started = time.monotonic()
            try:
                self.run_cycle()
            except ComputationTimeout as err:
                LOGGER.debug("Cycle discarded: %s", err)
            except Exception:
                LOGGER.exception("Detection cycle failed")
            elapsed = time.monotonic() - started
            self._stop_event.wait(max(0.0, period - elapsed))

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="atcguard-cycle", daemon=True)
        self._thread.start()
        LOGGER.info("Cycle loop started (period=%.2fs, deadline=%.2fs)", self.config.cycle_period_s, self.config.cycle_deadline_s)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout=timeout)
        self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def close(self) -> None:
        self.stop()
        self._executor.shutdown(wait=False)
