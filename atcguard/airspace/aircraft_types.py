#!/usr/bin/env python3
"""Wake-category classification, complexity weights and default envelopes by aircraft type."""

from __future__ import annotations

from typing import Dict, Optional

from atcguard.contracts.traffic import FlightIntent, PerformanceConstraints, Track


WAKE_LIGHT = "LIGHT"
WAKE_MEDIUM = "MEDIUM"
WAKE_HEAVY = "HEAVY"
WAKE_SUPER = "SUPER"

_TYPE_CLASSES: Dict[str, str] = {
    "A388": WAKE_SUPER,
    "A124": WAKE_SUPER,
    "A332": WAKE_HEAVY,
    "A333": WAKE_HEAVY,
    "A339": WAKE_HEAVY,
    "A346": WAKE_HEAVY,
    "A359": WAKE_HEAVY,
    "A35K": WAKE_HEAVY,
    "B744": WAKE_HEAVY,
    "B748": WAKE_HEAVY,
    "B763": WAKE_HEAVY,
    "B764": WAKE_HEAVY,
    "B772": WAKE_HEAVY,
    "B773": WAKE_HEAVY,
    "B77W": WAKE_HEAVY,
    "B788": WAKE_HEAVY,
    "B789": WAKE_HEAVY,
    "B78X": WAKE_HEAVY,
    "MD11": WAKE_HEAVY,
    "A319": WAKE_MEDIUM,
    "A320": WAKE_MEDIUM,
    "A321": WAKE_MEDIUM,
    "A20N": WAKE_MEDIUM,
    "A21N": WAKE_MEDIUM,
    "B737": WAKE_MEDIUM,
    "B738": WAKE_MEDIUM,
    "B739": WAKE_MEDIUM,
    "B38M": WAKE_MEDIUM,
    "B39M": WAKE_MEDIUM,
    "E170": WAKE_MEDIUM,
    "E190": WAKE_MEDIUM,
    "E195": WAKE_MEDIUM,
    "CRJ7": WAKE_MEDIUM,
    "CRJ9": WAKE_MEDIUM,
    "AT76": WAKE_MEDIUM,
    "DH8D": WAKE_MEDIUM,
    "C172": WAKE_LIGHT,
    "C182": WAKE_LIGHT,
    "C208": WAKE_LIGHT,
    "PA28": WAKE_LIGHT,
    "SR22": WAKE_LIGHT,
    "BE20": WAKE_LIGHT,
    "PC12": WAKE_LIGHT,
}

BASE_COMPLEXITY_WEIGHTS: Dict[str, float] = {
    WAKE_LIGHT: 1.0,
    WAKE_MEDIUM: 1.5,
    WAKE_HEAVY: 2.0,
    WAKE_SUPER: 2.5,
}

# Horizontal minimum behind each wake class, nm.
WAKE_SEPARATION_NM: Dict[str, float] = {
    WAKE_LIGHT: 3.0,
    WAKE_MEDIUM: 5.0,
    WAKE_HEAVY: 6.0,
    WAKE_SUPER: 8.0,
}

DEFAULT_ENVELOPES: Dict[str, PerformanceConstraints] = {
    WAKE_LIGHT: PerformanceConstraints(
        max_speed_kts=200.0,
        min_speed_kts=60.0,
        max_altitude_ft=18000.0,
        min_altitude_ft=500.0,
        max_climb_rate_fpm=800.0,
        max_descent_rate_fpm=1000.0,
    ),
    WAKE_MEDIUM: PerformanceConstraints(
        max_speed_kts=480.0,
        min_speed_kts=140.0,
        max_altitude_ft=41000.0,
        min_altitude_ft=1000.0,
        max_climb_rate_fpm=3000.0,
        max_descent_rate_fpm=3500.0,
    ),
    WAKE_HEAVY: PerformanceConstraints(
        max_speed_kts=520.0,
        min_speed_kts=160.0,
        max_altitude_ft=43000.0,
        min_altitude_ft=1000.0,
        max_climb_rate_fpm=2500.0,
        max_descent_rate_fpm=3500.0,
    ),
    WAKE_SUPER: PerformanceConstraints(
        max_speed_kts=520.0,
        min_speed_kts=170.0,
        max_altitude_ft=43000.0,
        min_altitude_ft=1000.0,
        max_climb_rate_fpm=2000.0,
        max_descent_rate_fpm=3000.0,
    ),
}


def classify_aircraft_type(type_code: Optional[str]) -> str:
    code = str(type_code or "").strip().upper()
    return _TYPE_CLASSES.get(code, WAKE_MEDIUM)


def base_complexity_weight(type_code: Optional[str]) -> float:
    return BASE_COMPLEXITY_WEIGHTS[classify_aircraft_type(type_code)]


def wake_separation_nm(type_code: Optional[str]) -> float:
    return WAKE_SEPARATION_NM[classify_aircraft_type(type_code)]


def default_constraints(type_code: Optional[str]) -> PerformanceConstraints:
    return DEFAULT_ENVELOPES[classify_aircraft_type(type_code)]


def resolve_constraints(track: Track, intent: Optional[FlightIntent] = None) -> PerformanceConstraints:
    if intent is not None and intent.constraints is not None:
        return intent.constraints
    return default_constraints(track.aircraft_type)
