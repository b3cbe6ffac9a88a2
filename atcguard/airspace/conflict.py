#!/usr/bin/env python3
"""Pairwise conflict detection over predicted trajectories with analytic CPA refinement."""

from __future__ import annotations

import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from atcguard.airspace.aircraft_types import wake_separation_nm
from atcguard.airspace.geo import (
    heading_difference_deg,
    horizontal_distance_nm,
    horizontal_distances_nm,
    to_local_nm,
    velocity_nm_s,
)
from atcguard.airspace.partition import Partition, assign_pairs, locate_sector, partition_by_sector
from atcguard.airspace.predict import build_offsets, predict_arrays, state_at
from atcguard.contracts.errors import ComputationTimeout
from atcguard.contracts.events import (
    CONFLICT_ALTITUDE,
    CONFLICT_SEPARATION,
    CONFLICT_SPEED,
    SEVERITY_CRITICAL,
    SEVERITY_HIGH,
    SEVERITY_MEDIUM,
    SEVERITY_RANK,
    URGENCY_HIGH,
    URGENCY_IMMEDIATE,
    URGENCY_NORMAL,
    URGENCY_RANK,
    URGENCY_URGENT,
    Conflict,
    ConflictSample,
    pair_id,
)
from atcguard.contracts.traffic import UNSECTORED_ID, FlightIntent, Sector, Track
from atcguard.engine.config import EngineConfig


LOGGER = logging.getLogger(__name__)

_VERTICALLY_ACTIVE_FPM = 100.0


def _iso_utc(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class PairAssessment:
    conflict_id: str
    aircraft_a: str
    aircraft_b: str
    violating: bool
    min_horizontal_nm: float
    vertical_separation_ft: float
    time_to_conflict_s: float
    min_normalized_separation: float
    cpa_time_s: float
    midpoint_lat: float
    midpoint_lon: float
    timeline: Tuple[ConflictSample, ...]


def _require_finite(track: Track) -> None:
    values = (
        track.lat,
        track.lon,
        track.altitude_ft,
        track.ground_speed_kts,
        track.heading_deg,
        track.vertical_rate_fpm,
    )
    for value in values:
        if value is None or not math.isfinite(float(value)):
            raise ValueError(f"track {track.aircraft_id} has non-finite state")


def horizontal_minimum_nm(track_a: Track, track_b: Track, config: EngineConfig) -> float:
    """Configured minimum, raised to the heavier wake class of the pair when wake separation is on."""

    minimum = float(config.min_horizontal_sep_nm)
    if not config.wake_separation_enabled:
        return minimum
    return max(minimum, wake_separation_nm(track_a.aircraft_type), wake_separation_nm(track_b.aircraft_type))


def cpa_time_s(track_a: Track, track_b: Track, horizon_s: float) -> float:
    """Closest point of approach under constant velocity, clamped to [0, horizon]."""

    dp_e, dp_n = to_local_nm(track_b.lat, track_b.lon, track_a.lat, track_a.lon)
    va_e, va_n = velocity_nm_s(track_a.ground_speed_kts, track_a.heading_deg)
    vb_e, vb_n = velocity_nm_s(track_b.ground_speed_kts, track_b.heading_deg)
    dv_e = vb_e - va_e
    dv_n = vb_n - va_n
    dv2 = dv_e * dv_e + dv_n * dv_n
    if dv2 < 1e-12:
        return 0.0
    t_star = -((dp_e * dv_e) + (dp_n * dv_n)) / dv2
    return float(min(max(t_star, 0.0), float(horizon_s)))


def assess_pair(
    track_a: Track,
    track_b: Track,
    config: EngineConfig,
    intent_a: Optional[FlightIntent] = None,
    intent_b: Optional[FlightIntent] = None,
    offsets_s: Optional[np.ndarray] = None,
) -> PairAssessment:
    if track_a.aircraft_id > track_b.aircraft_id:
        track_a, track_b = track_b, track_a
        intent_a, intent_b = intent_b, intent_a
    _require_finite(track_a)
    _require_finite(track_b)

    offsets = build_offsets(config.horizon_s, config.step_s) if offsets_s is None else np.asarray(offsets_s)
    ceiling = config.altitude_ceiling_ft
    lat_a, lon_a, alt_a, _ = predict_arrays(track_a, intent_a, offsets, ceiling_ft=ceiling)
    lat_b, lon_b, alt_b, _ = predict_arrays(track_b, intent_b, offsets, ceiling_ft=ceiling)

    t_star = cpa_time_s(track_a, track_b, float(offsets[-1]))
    times = offsets
    if not np.any(np.isclose(offsets, t_star, atol=1e-9)):
        sa = state_at(track_a, intent_a, t_star, ceiling_ft=ceiling)
        sb = state_at(track_b, intent_b, t_star, ceiling_ft=ceiling)
        insert_at = int(np.searchsorted(offsets, t_star))
        times = np.insert(offsets, insert_at, t_star)
        lat_a = np.insert(lat_a, insert_at, sa[0])
        lon_a = np.insert(lon_a, insert_at, sa[1])
        alt_a = np.insert(alt_a, insert_at, sa[2])
        lat_b = np.insert(lat_b, insert_at, sb[0])
        lon_b = np.insert(lon_b, insert_at, sb[1])
        alt_b = np.insert(alt_b, insert_at, sb[2])

    min_horizontal = horizontal_minimum_nm(track_a, track_b, config)
    horizontal = horizontal_distances_nm(lat_a, lon_a, lat_b, lon_b)
    vertical = np.abs(alt_a - alt_b)
    violating = (horizontal < min_horizontal) & (vertical < float(config.min_vertical_sep_ft))
    normalized = np.maximum(
        horizontal / min_horizontal,
        vertical / float(config.min_vertical_sep_ft),
    )

    any_violation = bool(np.any(violating))
    if any_violation:
        idx = int(np.argmin(np.where(violating, horizontal, np.inf)))
    else:
        idx = int(np.argmin(normalized))

    timeline = tuple(
        ConflictSample(
            offset_s=float(times[k]),
            horizontal_nm=float(horizontal[k]),
            vertical_ft=float(vertical[k]),
            violating=bool(violating[k]),
        )
        for k in range(times.shape[0])
    )
    return PairAssessment(
        conflict_id=pair_id(track_a.aircraft_id, track_b.aircraft_id),
        aircraft_a=track_a.aircraft_id,
        aircraft_b=track_b.aircraft_id,
        violating=any_violation,
        min_horizontal_nm=float(horizontal[idx]),
        vertical_separation_ft=float(vertical[idx]),
        time_to_conflict_s=float(times[idx]),
        min_normalized_separation=float(np.min(normalized)),
        cpa_time_s=float(t_star),
        midpoint_lat=float(0.5 * (lat_a[idx] + lat_b[idx])),
        midpoint_lon=float(0.5 * (lon_a[idx] + lon_b[idx])),
        timeline=timeline,
    )


def classify_severity(min_horizontal_nm: float, config: EngineConfig) -> Optional[str]:
    if min_horizontal_nm < config.severity_critical_nm:
        return SEVERITY_CRITICAL
    if min_horizontal_nm < config.severity_high_nm:
        return SEVERITY_HIGH
    if min_horizontal_nm < config.severity_medium_nm:
        return SEVERITY_MEDIUM
    return None


def classify_urgency(time_to_conflict_s: float, config: EngineConfig) -> str:
    if time_to_conflict_s < config.urgency_immediate_s:
        return URGENCY_IMMEDIATE
    if time_to_conflict_s < config.urgency_urgent_s:
        return URGENCY_URGENT
    if time_to_conflict_s < config.urgency_high_s:
        return URGENCY_HIGH
    return URGENCY_NORMAL


def classify_conflict_type(track_a: Track, track_b: Track, config: EngineConfig) -> str:
    vertical_now = abs(float(track_a.altitude_ft) - float(track_b.altitude_ft))
    vertically_active = (
        abs(float(track_a.vertical_rate_fpm)) >= _VERTICALLY_ACTIVE_FPM
        or abs(float(track_b.vertical_rate_fpm)) >= _VERTICALLY_ACTIVE_FPM
    )
    if vertically_active and vertical_now >= config.min_vertical_sep_ft:
        return CONFLICT_ALTITUDE
    if heading_difference_deg(track_a.heading_deg, track_b.heading_deg) <= config.in_trail_heading_deg:
        return CONFLICT_SPEED
    return CONFLICT_SEPARATION


def conflict_sort_key(conflict: Conflict):
    return (
        -SEVERITY_RANK.get(conflict.severity, 0),
        -URGENCY_RANK.get(conflict.urgency, 0),
        conflict.time_to_conflict_s,
        conflict.conflict_id,
    )


def sort_conflicts(conflicts: Iterable[Conflict]) -> List[Conflict]:
    return sorted(conflicts, key=conflict_sort_key)


def build_conflict(
    assessment: PairAssessment,
    track_a: Track,
    track_b: Track,
    sectors: Sequence[Sector],
    config: EngineConfig,
    now_iso: str,
    fallback_sector_id: str = UNSECTORED_ID,
) -> Optional[Conflict]:
    if not assessment.violating:
        return None
    # A wake-raised minimum can be violated beyond the medium threshold.
    severity = classify_severity(assessment.min_horizontal_nm, config) or SEVERITY_MEDIUM
    if track_a.aircraft_id > track_b.aircraft_id:
        track_a, track_b = track_b, track_a
    sector_id = locate_sector(assessment.midpoint_lat, assessment.midpoint_lon, sectors) or fallback_sector_id
    return Conflict(
        conflict_id=assessment.conflict_id,
        aircraft_a=assessment.aircraft_a,
        aircraft_b=assessment.aircraft_b,
        conflict_type=classify_conflict_type(track_a, track_b, config),
        severity=severity,
        urgency=classify_urgency(assessment.time_to_conflict_s, config),
        min_horizontal_nm=assessment.min_horizontal_nm,
        vertical_separation_ft=assessment.vertical_separation_ft,
        time_to_conflict_s=assessment.time_to_conflict_s,
        timeline=assessment.timeline,
        sector_id=sector_id,
        first_detected_utc=now_iso,
        last_updated_utc=now_iso,
    )


def _max_speed_kts(track: Track, intent: Optional[FlightIntent]) -> float:
    speed = float(track.ground_speed_kts)
    if intent is not None:
        for wp in intent.waypoints:
            if wp.target_speed_kts is not None:
                speed = max(speed, float(wp.target_speed_kts))
    return speed


def could_conflict(
    track_a: Track,
    track_b: Track,
    config: EngineConfig,
    intent_a: Optional[FlightIntent] = None,
    intent_b: Optional[FlightIntent] = None,
) -> bool:
    """Coarse gate: can the pair close to within the horizontal minimum inside the horizon?"""

    distance = horizontal_distance_nm(track_a.lat, track_a.lon, track_b.lat, track_b.lon)
    closure = (_max_speed_kts(track_a, intent_a) + _max_speed_kts(track_b, intent_b)) * config.horizon_s / 3600.0
    return distance <= closure + horizontal_minimum_nm(track_a, track_b, config)


def _detect_partition(
    partition: Partition,
    pairs: Sequence[Tuple[str, str]],
    tracks: Mapping[str, Track],
    intents: Mapping[str, FlightIntent],
    sectors: Sequence[Sector],
    config: EngineConfig,
    offsets: np.ndarray,
    now_iso: str,
    cancel_event: Optional[threading.Event],
) -> List[Conflict]:
    found: List[Conflict] = []
    skipped = 0
    for id_a, id_b in pairs:
        if cancel_event is not None and cancel_event.is_set():
            raise ComputationTimeout(config.cycle_deadline_s)
        track_a = tracks.get(id_a)
        track_b = tracks.get(id_b)
        if track_a is None or track_b is None:
            skipped += 1
            LOGGER.warning("Skipping pair %s: track missing from snapshot", pair_id(id_a, id_b))
            continue
        try:
            if not could_conflict(track_a, track_b, config, intents.get(id_a), intents.get(id_b)):
                continue
            assessment = assess_pair(track_a, track_b, config, intents.get(id_a), intents.get(id_b), offsets)
            conflict = build_conflict(
                assessment,
                track_a,
                track_b,
                sectors,
                config,
                now_iso,
                fallback_sector_id=partition.sector_id,
            )
        except (ValueError, TypeError, ArithmeticError) as err:
            skipped += 1
            LOGGER.warning("Skipping pair %s: %s", pair_id(id_a, id_b), err)
            continue
        if conflict is not None:
            found.append(conflict)
    if skipped:
        LOGGER.warning("Partition %s: %d pairs skipped for invalid data", partition.sector_id, skipped)
    return found


def detect(
    snapshot: Mapping[str, Track],
    sectors: Sequence[Sector],
    min_horizontal_sep_nm: Optional[float] = None,
    min_vertical_sep_ft: Optional[float] = None,
    horizon_s: Optional[float] = None,
    *,
    config: Optional[EngineConfig] = None,
    intents: Optional[Mapping[str, FlightIntent]] = None,
    now_utc: Optional[datetime] = None,
    cancel_event: Optional[threading.Event] = None,
) -> List[Conflict]:
    """Detect separation conflicts among all tracks in the snapshot.

    Partitions are evaluated in parallel; the merged result is ordered by
    severity, urgency, time-to-conflict and pair id so it never depends on
    completion order.
    """

    cfg = config or EngineConfig()
    overrides: Dict[str, float] = {}
    if min_horizontal_sep_nm is not None:
        overrides["min_horizontal_sep_nm"] = float(min_horizontal_sep_nm)
    if min_vertical_sep_ft is not None:
        overrides["min_vertical_sep_ft"] = float(min_vertical_sep_ft)
    if horizon_s is not None:
        overrides["horizon_s"] = float(horizon_s)
    if overrides:
        cfg = replace(cfg, **overrides)

    intents = intents or {}
    now_iso = _iso_utc(now_utc or datetime.now(timezone.utc))
    offsets = build_offsets(cfg.horizon_s, cfg.step_s)
    ordered_sectors = sorted(sectors, key=lambda s: s.sector_id)
    work = [(part, pairs) for part, pairs in assign_pairs(partition_by_sector(snapshot, ordered_sectors, cfg.sector_margin_nm)) if pairs]

    by_id: Dict[str, Conflict] = {}
    if cfg.detection_workers > 1 and len(work) > 1:
        with ThreadPoolExecutor(max_workers=min(cfg.detection_workers, len(work))) as executor:
            futures = {
                executor.submit(
                    _detect_partition,
                    part,
                    pairs,
                    snapshot,
                    intents,
                    ordered_sectors,
                    cfg,
                    offsets,
                    now_iso,
                    cancel_event,
                ): part.sector_id
                for part, pairs in work
            }
            for future in as_completed(futures):
                for conflict in future.result():
                    by_id[conflict.conflict_id] = conflict
    else:
        for part, pairs in work:
            for conflict in _detect_partition(
                part, pairs, snapshot, intents, ordered_sectors, cfg, offsets, now_iso, cancel_event
            ):
                by_id[conflict.conflict_id] = conflict

    conflicts = sort_conflicts(by_id.values())
    LOGGER.debug("Detection complete: aircraft=%d, conflicts=%d", len(snapshot), len(conflicts))
    return conflicts
