#!/usr/bin/env python3
"""Short-horizon trajectory prediction: constant velocity or piecewise along flight intent."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from atcguard.airspace.geo import bearing_deg, from_local_nm, to_local_nm, velocity_nm_s
from atcguard.contracts.traffic import FlightIntent, PredictedState, Track


DEFAULT_HORIZON_S = 300.0
DEFAULT_STEP_S = 15.0
DEFAULT_CEILING_FT = 60000.0

_MIN_LEG_NM = 1e-6
_MIN_SPEED_KTS = 1.0


@dataclass(frozen=True)
class _Leg:
    start_e: float
    start_n: float
    end_e: float
    end_n: float
    length_nm: float
    start_speed_kts: float
    end_speed_kts: float
    start_alt_ft: float
    end_alt_ft: float
    start_time_s: float
    duration_s: float


def build_offsets(horizon_s: float = DEFAULT_HORIZON_S, step_s: float = DEFAULT_STEP_S) -> np.ndarray:
    if step_s <= 0:
        raise ValueError("step_s must be > 0")
    if horizon_s < 0:
        raise ValueError("horizon_s must be >= 0")
    steps = int(math.floor(float(horizon_s) / float(step_s) + 1e-9))
    return np.arange(steps + 1, dtype=np.float64) * float(step_s)


def _leg_duration(length_nm: float, v0: float, v1: float) -> float:
    # Speed varies linearly with distance along the leg, so time is logarithmic in the speed ratio.
    if abs(v1 - v0) < 1e-12:
        return length_nm / v0
    return length_nm * math.log(v1 / v0) / (v1 - v0)


def _leg_distance(length_nm: float, v0: float, v1: float, t: float) -> float:
    if abs(v1 - v0) < 1e-12:
        return v0 * t
    k = (v1 - v0) / length_nm
    return (v0 / k) * (math.exp(k * t) - 1.0)


def _build_legs(track: Track, intent: Optional[FlightIntent]) -> List[_Leg]:
    if intent is None or not intent.waypoints:
        return []
    legs: List[_Leg] = []
    east, north = 0.0, 0.0
    speed = float(track.ground_speed_kts)
    alt = float(track.altitude_ft)
    elapsed = 0.0
    for wp in intent.waypoints:
        wp_e, wp_n = to_local_nm(wp.lat, wp.lon, track.lat, track.lon)
        length = math.hypot(wp_e - east, wp_n - north)
        next_speed = float(wp.target_speed_kts) if wp.target_speed_kts is not None else speed
        next_alt = float(wp.target_altitude_ft) if wp.target_altitude_ft is not None else alt
        if length < _MIN_LEG_NM:
            continue
        v0 = max(speed, _MIN_SPEED_KTS) / 3600.0
        v1 = max(next_speed, _MIN_SPEED_KTS) / 3600.0
        duration = _leg_duration(length, v0, v1)
        legs.append(
            _Leg(
                start_e=east,
                start_n=north,
                end_e=wp_e,
                end_n=wp_n,
                length_nm=length,
                start_speed_kts=speed,
                end_speed_kts=next_speed,
                start_alt_ft=alt,
                end_alt_ft=next_alt,
                start_time_s=elapsed,
                duration_s=duration,
            )
        )
        elapsed += duration
        east, north, speed, alt = wp_e, wp_n, next_speed, next_alt
    return legs


def _state_on_legs(legs: Sequence[_Leg], t: float) -> Tuple[float, float, float, float]:
    for leg in legs:
        if t < leg.start_time_s + leg.duration_s:
            local_t = max(0.0, t - leg.start_time_s)
            v0 = max(leg.start_speed_kts, _MIN_SPEED_KTS) / 3600.0
            v1 = max(leg.end_speed_kts, _MIN_SPEED_KTS) / 3600.0
            s = _leg_distance(leg.length_nm, v0, v1, local_t)
            frac = min(1.0, max(0.0, s / leg.length_nm))
            east = leg.start_e + frac * (leg.end_e - leg.start_e)
            north = leg.start_n + frac * (leg.end_n - leg.start_n)
            speed = leg.start_speed_kts + frac * (leg.end_speed_kts - leg.start_speed_kts)
            alt = leg.start_alt_ft + frac * (leg.end_alt_ft - leg.start_alt_ft)
            return east, north, alt, speed

    last = legs[-1]
    beyond = t - (last.start_time_s + last.duration_s)
    heading = bearing_deg(last.end_e - last.start_e, last.end_n - last.start_n)
    ve, vn = velocity_nm_s(last.end_speed_kts, heading)
    return last.end_e + ve * beyond, last.end_n + vn * beyond, last.end_alt_ft, last.end_speed_kts


def predict_arrays(
    track: Track,
    intent: Optional[FlightIntent],
    offsets_s: np.ndarray,
    ceiling_ft: float = DEFAULT_CEILING_FT,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Return (lat, lon, altitude_ft, speed_kts) arrays sampled at offsets_s."""

    offsets = np.asarray(offsets_s, dtype=np.float64)
    count = offsets.shape[0]

    if float(track.ground_speed_kts) <= 0.0:
        return (
            np.full(count, float(track.lat)),
            np.full(count, float(track.lon)),
            np.full(count, float(track.altitude_ft)),
            np.zeros(count),
        )

    legs = _build_legs(track, intent)
    if not legs:
        ve, vn = velocity_nm_s(track.ground_speed_kts, track.heading_deg)
        east = ve * offsets
        north = vn * offsets
        alt = float(track.altitude_ft) + (float(track.vertical_rate_fpm) / 60.0) * offsets
        speed = np.full(count, float(track.ground_speed_kts))
    else:
        east = np.empty(count, dtype=np.float64)
        north = np.empty(count, dtype=np.float64)
        alt = np.empty(count, dtype=np.float64)
        speed = np.empty(count, dtype=np.float64)
        for idx, t in enumerate(offsets):
            east[idx], north[idx], alt[idx], speed[idx] = _state_on_legs(legs, float(t))

    lat, lon = from_local_nm(east, north, track.lat, track.lon)
    alt = np.clip(alt, 0.0, float(ceiling_ft))
    return lat, lon, alt, speed


def state_at(
    track: Track,
    intent: Optional[FlightIntent],
    offset_s: float,
    ceiling_ft: float = DEFAULT_CEILING_FT,
) -> Tuple[float, float, float, float]:
    lat, lon, alt, speed = predict_arrays(track, intent, np.array([float(offset_s)]), ceiling_ft=ceiling_ft)
    return float(lat[0]), float(lon[0]), float(alt[0]), float(speed[0])


def predict(
    track: Track,
    intent: Optional[FlightIntent] = None,
    horizon_s: float = DEFAULT_HORIZON_S,
    step_s: float = DEFAULT_STEP_S,
    ceiling_ft: float = DEFAULT_CEILING_FT,
) -> List[PredictedState]:
    offsets = build_offsets(horizon_s, step_s)
    lat, lon, alt, speed = predict_arrays(track, intent, offsets, ceiling_ft=ceiling_ft)
    return [
        PredictedState(
            aircraft_id=track.aircraft_id,
            offset_s=float(offsets[idx]),
            lat=float(lat[idx]),
            lon=float(lon[idx]),
            altitude_ft=float(alt[idx]),
            speed_kts=float(speed[idx]),
        )
        for idx in range(offsets.shape[0])
    ]
