#!/usr/bin/env python3
"""Validation and payload parsing for tracks, flight intents and sectors."""

from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Sequence

from atcguard.contracts.errors import ValidationError
from atcguard.contracts.traffic import (
    PHASE_CRUISE,
    UNSECTORED_ID,
    VALID_PHASES,
    FlightIntent,
    PerformanceConstraints,
    Sector,
    Track,
    Waypoint,
)


MIN_ALTITUDE_FT = -1500.0
MAX_GROUND_SPEED_KTS = 1500.0
MAX_VERTICAL_RATE_FPM = 15000.0


def _is_finite(value: Any) -> bool:
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def _check_range(details: List[str], name: str, value: Any, low: float, high: float) -> None:
    if not _is_finite(value):
        details.append(f"{name} must be a finite number")
        return
    number = float(value)
    if number < low or number > high:
        details.append(f"{name} out of range [{low}, {high}]: {number}")


def validate_track(track: Track, ceiling_ft: float = 60000.0) -> Track:
    details: List[str] = []
    if not str(track.aircraft_id or "").strip():
        details.append("aircraft_id must be non-empty")
    _check_range(details, "lat", track.lat, -90.0, 90.0)
    _check_range(details, "lon", track.lon, -180.0, 180.0)
    _check_range(details, "altitude_ft", track.altitude_ft, MIN_ALTITUDE_FT, float(ceiling_ft))
    _check_range(details, "ground_speed_kts", track.ground_speed_kts, 0.0, MAX_GROUND_SPEED_KTS)
    _check_range(details, "heading_deg", track.heading_deg, 0.0, 360.0)
    _check_range(details, "vertical_rate_fpm", track.vertical_rate_fpm, -MAX_VERTICAL_RATE_FPM, MAX_VERTICAL_RATE_FPM)
    if isinstance(track.sequence, bool) or not isinstance(track.sequence, int) or track.sequence < 0:
        details.append("sequence must be a non-negative integer")
    if details:
        raise ValidationError("track", details, entity_id=str(track.aircraft_id or "") or None)
    return track


def validate_intent(intent: FlightIntent) -> FlightIntent:
    details: List[str] = []
    if not str(intent.aircraft_id or "").strip():
        details.append("aircraft_id must be non-empty")
    if intent.phase not in VALID_PHASES:
        details.append(f"phase must be one of {sorted(VALID_PHASES)}")
    for idx, wp in enumerate(intent.waypoints):
        _check_range(details, f"waypoints[{idx}].lat", wp.lat, -90.0, 90.0)
        _check_range(details, f"waypoints[{idx}].lon", wp.lon, -180.0, 180.0)
        if wp.target_altitude_ft is not None:
            _check_range(details, f"waypoints[{idx}].target_altitude_ft", wp.target_altitude_ft, MIN_ALTITUDE_FT, 100000.0)
        if wp.target_speed_kts is not None:
            _check_range(details, f"waypoints[{idx}].target_speed_kts", wp.target_speed_kts, 1.0, MAX_GROUND_SPEED_KTS)
    cons = intent.constraints
    if cons is not None:
        if not all(_is_finite(v) for v in (cons.max_speed_kts, cons.min_speed_kts, cons.max_altitude_ft, cons.min_altitude_ft)):
            details.append("constraints must be finite numbers")
        else:
            if cons.min_speed_kts > cons.max_speed_kts:
                details.append("constraints.min_speed_kts cannot exceed max_speed_kts")
            if cons.min_altitude_ft > cons.max_altitude_ft:
                details.append("constraints.min_altitude_ft cannot exceed max_altitude_ft")
    if details:
        raise ValidationError("flight_intent", details, entity_id=str(intent.aircraft_id or "") or None)
    return intent


def validate_sector(sector: Sector) -> Sector:
    details: List[str] = []
    if not str(sector.sector_id or "").strip():
        details.append("sector_id must be non-empty")
    if sector.sector_id == UNSECTORED_ID:
        details.append(f"sector_id {UNSECTORED_ID} is reserved")
    if len(sector.boundary) < 3:
        details.append("boundary needs at least 3 vertices")
    for idx, vertex in enumerate(sector.boundary):
        if len(vertex) != 2:
            details.append(f"boundary[{idx}] must be a (lat, lon) pair")
            continue
        _check_range(details, f"boundary[{idx}].lat", vertex[0], -90.0, 90.0)
        _check_range(details, f"boundary[{idx}].lon", vertex[1], -180.0, 180.0)
    if isinstance(sector.max_aircraft, bool) or not isinstance(sector.max_aircraft, int) or sector.max_aircraft <= 0:
        details.append("max_aircraft must be a positive integer")
    if not _is_finite(sector.max_complexity) or float(sector.max_complexity) <= 0.0:
        details.append("max_complexity must be a positive number")
    if details:
        raise ValidationError("sector", details, entity_id=str(sector.sector_id or "") or None)
    return sector


def validate_sectors(sectors: Sequence[Sector]) -> List[Sector]:
    seen = set()
    out: List[Sector] = []
    for sector in sectors:
        validate_sector(sector)
        if sector.sector_id in seen:
            raise ValidationError("sector", [f"duplicate sector_id {sector.sector_id}"], entity_id=sector.sector_id)
        seen.add(sector.sector_id)
        out.append(sector)
    return sorted(out, key=lambda s: s.sector_id)


def _number(payload: Dict[str, Any], key: str, details: List[str], default: Optional[float] = None) -> float:
    raw = payload.get(key, default)
    if raw is None:
        details.append(f"{key} is required")
        return float("nan")
    try:
        return float(raw)
    except (TypeError, ValueError):
        details.append(f"{key} must be a number")
        return float("nan")


def _optional_number(payload: Dict[str, Any], key: str, details: List[str]) -> Optional[float]:
    raw = payload.get(key)
    if raw is None:
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        details.append(f"{key} must be a number")
        return None


def parse_track(payload: Dict[str, Any], ceiling_ft: float = 60000.0) -> Track:
    if not isinstance(payload, dict):
        raise ValidationError("track", ["payload must be an object"])
    details: List[str] = []
    aircraft_id = str(payload.get("aircraft_id") or "").strip()
    raw_sequence = payload.get("sequence")
    sequence = -1
    if isinstance(raw_sequence, bool) or raw_sequence is None:
        details.append("sequence is required")
    else:
        try:
            sequence = int(raw_sequence)
        except (TypeError, ValueError):
            details.append("sequence must be an integer")
    track = Track(
        aircraft_id=aircraft_id,
        callsign=str(payload.get("callsign") or aircraft_id),
        aircraft_type=str(payload.get("aircraft_type") or "").strip().upper(),
        lat=_number(payload, "lat", details),
        lon=_number(payload, "lon", details),
        altitude_ft=_number(payload, "altitude_ft", details),
        ground_speed_kts=_number(payload, "ground_speed_kts", details),
        heading_deg=_number(payload, "heading_deg", details),
        vertical_rate_fpm=_number(payload, "vertical_rate_fpm", details, default=0.0),
        timestamp_utc=str(payload.get("timestamp_utc") or ""),
        sequence=sequence,
        sector_id=str(payload.get("sector_id") or ""),
    )
    if details:
        raise ValidationError("track", details, entity_id=aircraft_id or None)
    return validate_track(track, ceiling_ft=ceiling_ft)


def _parse_constraints(payload: Optional[Dict[str, Any]], details: List[str]) -> Optional[PerformanceConstraints]:
    if payload is None:
        return None
    if not isinstance(payload, dict):
        details.append("constraints must be an object")
        return None
    return PerformanceConstraints(
        max_speed_kts=_number(payload, "max_speed_kts", details),
        min_speed_kts=_number(payload, "min_speed_kts", details),
        max_altitude_ft=_number(payload, "max_altitude_ft", details),
        min_altitude_ft=_number(payload, "min_altitude_ft", details),
        max_climb_rate_fpm=_number(payload, "max_climb_rate_fpm", details, default=3000.0),
        max_descent_rate_fpm=_number(payload, "max_descent_rate_fpm", details, default=3500.0),
    )


def parse_intent(payload: Dict[str, Any]) -> FlightIntent:
    if not isinstance(payload, dict):
        raise ValidationError("flight_intent", ["payload must be an object"])
    details: List[str] = []
    waypoints: List[Waypoint] = []
    for idx, raw in enumerate(payload.get("waypoints") or []):
        if not isinstance(raw, dict):
            details.append(f"waypoints[{idx}] must be an object")
            continue
        waypoints.append(
            Waypoint(
                name=str(raw.get("name") or f"WP{idx + 1}"),
                lat=_number(raw, "lat", details),
                lon=_number(raw, "lon", details),
                target_altitude_ft=_optional_number(raw, "target_altitude_ft", details),
                target_speed_kts=_optional_number(raw, "target_speed_kts", details),
            )
        )
    intent = FlightIntent(
        aircraft_id=str(payload.get("aircraft_id") or "").strip(),
        waypoints=tuple(waypoints),
        constraints=_parse_constraints(payload.get("constraints"), details),
        phase=str(payload.get("phase") or PHASE_CRUISE).strip().lower(),
    )
    if details:
        raise ValidationError("flight_intent", details, entity_id=intent.aircraft_id or None)
    return validate_intent(intent)


def parse_sector(payload: Dict[str, Any]) -> Sector:
    if not isinstance(payload, dict):
        raise ValidationError("sector", ["payload must be an object"])
    details: List[str] = []
    sector_id = str(payload.get("sector_id") or "").strip()
    name = str(payload.get("name") or sector_id)
    raw_max_aircraft = payload.get("max_aircraft")
    try:
        max_aircraft = int(raw_max_aircraft)
    except (TypeError, ValueError):
        details.append("max_aircraft must be an integer")
        max_aircraft = 0
    max_complexity = _number(payload, "max_complexity", details)

    bounds = payload.get("bounds")
    if isinstance(bounds, dict):
        if details:
            raise ValidationError("sector", details, entity_id=sector_id or None)
        sector = Sector.from_bounds(
            sector_id=sector_id,
            name=name,
            min_lat=_number(bounds, "min_lat", details),
            min_lon=_number(bounds, "min_lon", details),
            max_lat=_number(bounds, "max_lat", details),
            max_lon=_number(bounds, "max_lon", details),
            max_aircraft=max_aircraft,
            max_complexity=max_complexity,
        )
    else:
        boundary = []
        for idx, vertex in enumerate(payload.get("boundary") or []):
            try:
                boundary.append((float(vertex[0]), float(vertex[1])))
            except (TypeError, ValueError, IndexError):
                details.append(f"boundary[{idx}] must be a [lat, lon] pair")
        sector = Sector(
            sector_id=sector_id,
            name=name,
            boundary=tuple(boundary),
            max_aircraft=max_aircraft,
            max_complexity=max_complexity,
        )
    if details:
        raise ValidationError("sector", details, entity_id=sector_id or None)
    return validate_sector(sector)
