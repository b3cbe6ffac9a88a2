#!/usr/bin/env python3
"""Contracts for aircraft state, flight intent and sector definitions."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Tuple


PHASE_DEPARTURE = "departure"
PHASE_CRUISE = "cruise"
PHASE_ARRIVAL = "arrival"
VALID_PHASES = {
    PHASE_DEPARTURE,
    PHASE_CRUISE,
    PHASE_ARRIVAL,
}

STATUS_NORMAL = "normal"
STATUS_WARNING = "warning"
STATUS_CRITICAL = "critical"

UNSECTORED_ID = "UNSECTORED"


@dataclass(frozen=True)
class Track:
    aircraft_id: str
    callsign: str
    aircraft_type: str
    lat: float
    lon: float
    altitude_ft: float
    ground_speed_kts: float
    heading_deg: float
    vertical_rate_fpm: float
    timestamp_utc: str
    sequence: int
    sector_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Waypoint:
    name: str
    lat: float
    lon: float
    target_altitude_ft: Optional[float] = None
    target_speed_kts: Optional[float] = None


@dataclass(frozen=True)
class PerformanceConstraints:
    max_speed_kts: float
    min_speed_kts: float
    max_altitude_ft: float
    min_altitude_ft: float
    max_climb_rate_fpm: float = 3000.0
    max_descent_rate_fpm: float = 3500.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class FlightIntent:
    aircraft_id: str
    waypoints: Tuple[Waypoint, ...] = ()
    constraints: Optional[PerformanceConstraints] = None
    phase: str = PHASE_CRUISE

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PredictedState:
    aircraft_id: str
    offset_s: float
    lat: float
    lon: float
    altitude_ft: float
    speed_kts: float


@dataclass(frozen=True)
class Sector:
    sector_id: str
    name: str
    boundary: Tuple[Tuple[float, float], ...]
    max_aircraft: int
    max_complexity: float
    current_aircraft: int = 0
    current_complexity: float = 0.0
    utilization: float = 0.0
    complexity_utilization: float = 0.0
    status: str = STATUS_NORMAL
    aircraft_ids: Tuple[str, ...] = ()

    @classmethod
    def from_bounds(
        cls,
        sector_id: str,
        name: str,
        min_lat: float,
        min_lon: float,
        max_lat: float,
        max_lon: float,
        max_aircraft: int,
        max_complexity: float,
    ) -> "Sector":
        boundary = (
            (float(min_lat), float(min_lon)),
            (float(min_lat), float(max_lon)),
            (float(max_lat), float(max_lon)),
            (float(max_lat), float(min_lon)),
        )
        return cls(
            sector_id=sector_id,
            name=name,
            boundary=boundary,
            max_aircraft=int(max_aircraft),
            max_complexity=float(max_complexity),
        )

    @property
    def is_unsectored(self) -> bool:
        return self.sector_id == UNSECTORED_ID

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["boundary"] = [[lat, lon] for lat, lon in self.boundary]
        payload["aircraft_ids"] = list(self.aircraft_ids)
        return payload


def unsectored_sector() -> Sector:
    return Sector(
        sector_id=UNSECTORED_ID,
        name="Unsectored airspace",
        boundary=(),
        max_aircraft=0,
        max_complexity=0.0,
    )
