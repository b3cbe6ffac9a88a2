#!/usr/bin/env python3
"""Contracts for conflict, resolution, alert and snapshot payloads."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from atcguard.contracts.traffic import Sector, Track
from atcguard.contracts.versioning import ENGINE_MODEL_VERSION, SCHEMA_VERSION


SEVERITY_CRITICAL = "critical"
SEVERITY_HIGH = "high"
SEVERITY_MEDIUM = "medium"
SEVERITY_RANK = {
    SEVERITY_MEDIUM: 1,
    SEVERITY_HIGH: 2,
    SEVERITY_CRITICAL: 3,
}

URGENCY_IMMEDIATE = "immediate"
URGENCY_URGENT = "urgent"
URGENCY_HIGH = "high"
URGENCY_NORMAL = "normal"
URGENCY_RANK = {
    URGENCY_NORMAL: 0,
    URGENCY_HIGH: 1,
    URGENCY_URGENT: 2,
    URGENCY_IMMEDIATE: 3,
}

CONFLICT_SEPARATION = "separation"
CONFLICT_ALTITUDE = "altitude"
CONFLICT_SPEED = "speed"

MANEUVER_ALTITUDE = "altitude"
MANEUVER_SPEED = "speed"
MANEUVER_HEADING = "heading"
MANEUVER_TIER = {
    MANEUVER_ALTITUDE: 1,
    MANEUVER_SPEED: 2,
    MANEUVER_HEADING: 3,
}

ALERT_INFO = "info"
ALERT_WARNING = "warning"
ALERT_ERROR = "error"

SOURCE_CONFLICT = "conflict"
SOURCE_SECTOR = "sector"
SOURCE_SYSTEM = "system"

PRIORITY_LOW = 1
PRIORITY_MEDIUM = 2
PRIORITY_HIGH = 3
PRIORITY_CRITICAL = 4
PRIORITY_EMERGENCY = 5
PRIORITY_LABELS = {
    PRIORITY_LOW: "low",
    PRIORITY_MEDIUM: "medium",
    PRIORITY_HIGH: "high",
    PRIORITY_CRITICAL: "critical",
    PRIORITY_EMERGENCY: "emergency",
}

ASSIGN_INITIAL = "initial_assignment"
ASSIGN_LOAD_BALANCING = "load_balancing"
ASSIGN_OPTIMIZATION = "optimization"

INGEST_ACCEPTED = "accepted"
INGEST_STALE = "stale"
INGEST_INVALID = "invalid"


def canonical_pair(aircraft_a: str, aircraft_b: str) -> Tuple[str, str]:
    a, b = str(aircraft_a), str(aircraft_b)
    return (a, b) if a <= b else (b, a)


def pair_id(aircraft_a: str, aircraft_b: str) -> str:
    first, second = canonical_pair(aircraft_a, aircraft_b)
    return f"{first}|{second}"


@dataclass(frozen=True)
class ConflictSample:
    offset_s: float
    horizontal_nm: float
    vertical_ft: float
    violating: bool


@dataclass(frozen=True)
class ResolutionSuggestion:
    maneuver: str
    aircraft_id: str
    magnitude: float
    priority: int
    resolves_without_new_conflict: bool
    resulting_separation: float
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Conflict:
    conflict_id: str
    aircraft_a: str
    aircraft_b: str
    conflict_type: str
    severity: str
    urgency: str
    min_horizontal_nm: float
    vertical_separation_ft: float
    time_to_conflict_s: float
    timeline: Tuple[ConflictSample, ...]
    sector_id: str
    first_detected_utc: str
    last_updated_utc: str
    resolutions: Tuple[ResolutionSuggestion, ...] = ()
    model_version: str = ENGINE_MODEL_VERSION

    @property
    def has_validated_resolution(self) -> bool:
        return any(item.resolves_without_new_conflict for item in self.resolutions)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["timeline"] = [asdict(sample) for sample in self.timeline]
        payload["resolutions"] = [item.to_dict() for item in self.resolutions]
        return payload


@dataclass(frozen=True)
class Alert:
    alert_id: str
    kind: str
    message: str
    source_type: str
    source_id: str
    priority: int
    created_at_utc: str
    updated_at_utc: str
    escalated: bool = False
    acknowledged: bool = False

    @property
    def priority_label(self) -> str:
        return PRIORITY_LABELS.get(self.priority, "unknown")

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["priority_label"] = self.priority_label
        return payload


@dataclass(frozen=True)
class SectorAssignment:
    aircraft_id: str
    assigned_sector_id: str
    previous_sector_id: str
    reason: str
    priority: int
    complexity: float
    reasoning: str

    @property
    def is_sector_change(self) -> bool:
        return bool(self.previous_sector_id) and self.previous_sector_id != self.assigned_sector_id

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["priority_label"] = PRIORITY_LABELS.get(self.priority, "unknown")
        payload["sector_change"] = self.is_sector_change
        return payload


@dataclass
class CycleStats:
    total_aircraft: int = 0
    total_conflicts: int = 0
    conflict_rate: float = 0.0
    conflicts_by_severity: Dict[str, int] = field(default_factory=dict)
    conflicts_by_urgency: Dict[str, int] = field(default_factory=dict)
    mean_time_to_conflict_s: float = 0.0
    mean_min_horizontal_nm: float = 0.0
    has_immediate_conflicts: bool = False
    unresolved_conflicts: int = 0
    sectors_by_status: Dict[str, int] = field(default_factory=dict)
    mean_sector_utilization: float = 0.0
    most_loaded_sector: Optional[str] = None
    cycle_duration_ms: float = 0.0
    accepted_updates: int = 0
    stale_updates: int = 0
    rejected_updates: int = 0
    timed_out_cycles: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class EngineSnapshot:
    generation: int
    generated_at_utc: str
    tracks: Tuple[Track, ...]
    conflicts: Tuple[Conflict, ...]
    sectors: Tuple[Sector, ...]
    alerts: Tuple[Alert, ...]
    stats: CycleStats
    sector_assignments: Tuple[SectorAssignment, ...] = ()
    model_version: str = ENGINE_MODEL_VERSION
    schema_version: str = SCHEMA_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generation": self.generation,
            "generated_at_utc": self.generated_at_utc,
            "tracks": [track.to_dict() for track in self.tracks],
            "conflicts": [conflict.to_dict() for conflict in self.conflicts],
            "sectors": [sector.to_dict() for sector in self.sectors],
            "alerts": [alert.to_dict() for alert in self.alerts],
            "sector_assignments": [item.to_dict() for item in self.sector_assignments],
            "stats": self.stats.to_dict(),
            "model_version": self.model_version,
            "schema_version": self.schema_version,
        }


@dataclass
class SnapshotDelta:
    generation: int
    generated_at_utc: str
    full: bool
    conflicts_upserted: List[Dict[str, Any]] = field(default_factory=list)
    conflicts_removed: List[str] = field(default_factory=list)
    sectors_upserted: List[Dict[str, Any]] = field(default_factory=list)
    sectors_removed: List[str] = field(default_factory=list)
    alerts_upserted: List[Dict[str, Any]] = field(default_factory=list)
    alerts_removed: List[str] = field(default_factory=list)
    assignments_upserted: List[Dict[str, Any]] = field(default_factory=list)
    assignments_removed: List[str] = field(default_factory=list)
    stats: Optional[Dict[str, Any]] = None
    schema_version: str = SCHEMA_VERSION

    @property
    def is_empty(self) -> bool:
        return not (
            self.conflicts_upserted
            or self.conflicts_removed
            or self.sectors_upserted
            or self.sectors_removed
            or self.alerts_upserted
            or self.alerts_removed
            or self.assignments_upserted
            or self.assignments_removed
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class IngestResult:
    aircraft_id: str
    status: str
    sequence: Optional[int] = None
    details: Tuple[str, ...] = ()

    @property
    def accepted(self) -> bool:
        return self.status == INGEST_ACCEPTED

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["details"] = list(self.details)
        payload["schema_version"] = SCHEMA_VERSION
        return payload
