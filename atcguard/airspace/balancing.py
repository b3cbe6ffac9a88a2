#!/usr/bin/env python3
"""Sector assignment scoring and load rebalancing between adjacent sectors."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

from atcguard.airspace.geo import (
    horizontal_distance_nm,
    point_in_polygon,
    polygon_bounds,
    polygon_centroid,
    within_bounds_margin,
)
from atcguard.airspace.workload import classify_status
from atcguard.contracts.errors import ComputationTimeout
from atcguard.contracts.events import (
    ASSIGN_INITIAL,
    ASSIGN_LOAD_BALANCING,
    ASSIGN_OPTIMIZATION,
    PRIORITY_HIGH,
    PRIORITY_LOW,
    PRIORITY_MEDIUM,
    SectorAssignment,
)
from atcguard.contracts.traffic import STATUS_CRITICAL, STATUS_NORMAL, STATUS_WARNING, UNSECTORED_ID, Sector, Track
from atcguard.engine.config import EngineConfig


LOGGER = logging.getLogger(__name__)

WEIGHT_CAPACITY = 0.4
WEIGHT_COMPLEXITY_BALANCE = 0.3
WEIGHT_GEOGRAPHIC = 0.2
WEIGHT_HEALTH = 0.1

HEALTH_SCORES = {
    STATUS_NORMAL: 1.0,
    STATUS_WARNING: 0.4,
    STATUS_CRITICAL: 0.1,
}

HIGH_PRIORITY_COMPLEXITY = 7.0


@dataclass
class _Load:
    sector: Sector
    count: int
    complexity: float

    @property
    def utilization(self) -> float:
        return self.count / float(self.sector.max_aircraft) if self.sector.max_aircraft > 0 else 0.0

    @property
    def complexity_utilization(self) -> float:
        return self.complexity / self.sector.max_complexity if self.sector.max_complexity > 0 else 0.0

    def status(self, config: EngineConfig) -> str:
        return classify_status(self.utilization, self.complexity_utilization, config)


def _assignable(sectors: Sequence[Sector]) -> List[Sector]:
    return sorted((s for s in sectors if not s.is_unsectored and len(s.boundary) >= 3), key=lambda s: s.sector_id)


def sector_score(sector: Sector, complexity: float) -> float:
    """Weighted fit of one aircraft to an evaluated sector that contains it, in [0, 1]."""

    capacity = max(0.0, 1.0 - float(sector.utilization))
    if sector.max_complexity > 0:
        balance = max(0.0, 1.0 - abs(float(sector.current_complexity) - float(complexity)) / sector.max_complexity)
    else:
        balance = 0.0
    health = HEALTH_SCORES.get(sector.status, 0.0)
    return (
        WEIGHT_CAPACITY * capacity
        + WEIGHT_COMPLEXITY_BALANCE * balance
        + WEIGHT_GEOGRAPHIC
        + WEIGHT_HEALTH * health
    )


def assignment_priority(reason: str, complexity: float) -> int:
    if complexity > HIGH_PRIORITY_COMPLEXITY:
        return PRIORITY_HIGH
    if reason == ASSIGN_LOAD_BALANCING:
        return PRIORITY_MEDIUM
    return PRIORITY_LOW


def _reason(previous_sector_id: str, assigned_sector_id: str) -> str:
    if not previous_sector_id:
        return ASSIGN_INITIAL
    if previous_sector_id != assigned_sector_id:
        return ASSIGN_LOAD_BALANCING
    return ASSIGN_OPTIMIZATION


def _reasoning(aircraft_id: str, assigned: str, previous: str, reason: str, complexity: float) -> str:
    if reason == ASSIGN_INITIAL:
        return f"Initial assignment of {aircraft_id} to {assigned}"
    if reason == ASSIGN_LOAD_BALANCING:
        return f"Moved {aircraft_id} from {previous} to {assigned}"
    return f"Kept {aircraft_id} in {assigned} (complexity {complexity:.2f})"


def _closest_by_centroid(track: Track, sectors: Sequence[Sector]) -> Sector:
    def _distance(sector: Sector) -> float:
        lat, lon = polygon_centroid(sector.boundary)
        return horizontal_distance_nm(track.lat, track.lon, lat, lon)

    return min(sectors, key=lambda s: (_distance(s), s.sector_id))


def assign_aircraft(
    track: Track,
    sectors: Sequence[Sector],
    complexity: float,
    previous_sector_id: str = "",
    config: Optional[EngineConfig] = None,
) -> SectorAssignment:
    """Pick the controlling sector for one aircraft.

    The previous sector is kept while the aircraft stays inside it or within
    ``sector_margin_nm`` of its bounds. Otherwise the best-scoring containing
    sector wins; an aircraft outside every polygon goes to the closest sector
    whose margin covers it, or to UNSECTORED.
    """

    cfg = config or EngineConfig()
    candidates = _assignable(sectors)
    by_id = {sector.sector_id: sector for sector in candidates}

    assigned: Optional[str] = None
    previous = by_id.get(previous_sector_id)
    if previous is not None and (
        point_in_polygon(track.lat, track.lon, previous.boundary)
        or within_bounds_margin(track.lat, track.lon, polygon_bounds(previous.boundary), cfg.sector_margin_nm)
    ):
        assigned = previous.sector_id

    if assigned is None:
        containing = [s for s in candidates if point_in_polygon(track.lat, track.lon, s.boundary)]
        if containing:
            best = max(containing, key=lambda s: (sector_score(s, complexity), s.sector_id))
            assigned = best.sector_id
        else:
            nearby = [
                s
                for s in candidates
                if within_bounds_margin(track.lat, track.lon, polygon_bounds(s.boundary), cfg.sector_margin_nm)
            ]
            assigned = _closest_by_centroid(track, nearby).sector_id if nearby else UNSECTORED_ID

    reason = _reason(previous_sector_id, assigned)
    return SectorAssignment(
        aircraft_id=track.aircraft_id,
        assigned_sector_id=assigned,
        previous_sector_id=previous_sector_id,
        reason=reason,
        priority=assignment_priority(reason, complexity),
        complexity=float(complexity),
        reasoning=_reasoning(track.aircraft_id, assigned, previous_sector_id, reason, complexity),
    )


def rebalance(
    snapshot: Mapping[str, Track],
    sectors: Sequence[Sector],
    complexities: Mapping[str, float],
    assignments: Mapping[str, SectorAssignment],
    config: Optional[EngineConfig] = None,
    cancel_event: Optional[threading.Event] = None,
) -> List[SectorAssignment]:
    """Move aircraft out of warning/critical sectors into normal neighbours.

    Loads are counted from ``assignments``, so earlier moves stay accounted
    for while the aircraft is kept in its new sector. Senders are taken
    busiest first, receivers least busy first. A move needs the utilization gap to exceed
    ``rebalance_threshold``, the aircraft within ``sector_margin_nm`` of the
    receiver, and the receiver to stay normal afterwards.
    """

    cfg = config or EngineConfig()
    loads = {sector.sector_id: _Load(sector=sector, count=0, complexity=0.0) for sector in _assignable(sectors)}
    for aircraft_id, item in assignments.items():
        load = loads.get(item.assigned_sector_id)
        if load is not None:
            load.count += 1
            load.complexity += complexities.get(aircraft_id, 0.0)
    overloaded = sorted(
        (load for load in loads.values() if load.status(cfg) != STATUS_NORMAL),
        key=lambda load: (-load.utilization, load.sector.sector_id),
    )
    receivers = sorted(
        (load for load in loads.values() if load.status(cfg) == STATUS_NORMAL),
        key=lambda load: (load.utilization, load.sector.sector_id),
    )

    moves: List[SectorAssignment] = []
    moved: Dict[str, str] = {}
    for sender in overloaded:
        sender_id = sender.sector.sector_id
        for receiver in receivers:
            if sender.status(cfg) == STATUS_NORMAL:
                break
            bounds = polygon_bounds(receiver.sector.boundary)
            movable = sorted(
                (
                    aircraft_id
                    for aircraft_id, item in assignments.items()
                    if item.assigned_sector_id == sender_id and aircraft_id not in moved and aircraft_id in snapshot
                ),
                key=lambda aircraft_id: (-complexities.get(aircraft_id, 0.0), aircraft_id),
            )
            for aircraft_id in movable:
                if cancel_event is not None and cancel_event.is_set():
                    raise ComputationTimeout(cfg.cycle_deadline_s)
                if sender.status(cfg) == STATUS_NORMAL:
                    break
                if sender.utilization - receiver.utilization <= cfg.rebalance_threshold:
                    break
                track = snapshot[aircraft_id]
                if not within_bounds_margin(track.lat, track.lon, bounds, cfg.sector_margin_nm):
                    continue
                complexity = complexities.get(aircraft_id, 0.0)
                trial = _Load(receiver.sector, receiver.count + 1, receiver.complexity + complexity)
                if trial.status(cfg) != STATUS_NORMAL:
                    continue
                sender.count -= 1
                sender.complexity -= complexity
                receiver.count, receiver.complexity = trial.count, trial.complexity
                moved[aircraft_id] = receiver.sector.sector_id
                moves.append(
                    SectorAssignment(
                        aircraft_id=aircraft_id,
                        assigned_sector_id=receiver.sector.sector_id,
                        previous_sector_id=sender_id,
                        reason=ASSIGN_LOAD_BALANCING,
                        priority=PRIORITY_MEDIUM,
                        complexity=float(complexity),
                        reasoning=f"Rebalancing from overloaded {sender_id} to {receiver.sector.sector_id}",
                    )
                )

    if moves:
        LOGGER.info(
            "Rebalanced %d aircraft: %s",
            len(moves),
            ", ".join(f"{m.aircraft_id}->{m.assigned_sector_id}" for m in moves),
        )
    return moves


def assign_sectors(
    snapshot: Mapping[str, Track],
    sectors: Sequence[Sector],
    complexities: Mapping[str, float],
    previous: Optional[Mapping[str, str]] = None,
    config: Optional[EngineConfig] = None,
    cancel_event: Optional[threading.Event] = None,
) -> List[SectorAssignment]:
    """Assignment for every aircraft in the snapshot, rebalancing applied, sorted by id."""

    cfg = config or EngineConfig()
    prior = previous or {}
    assignments: Dict[str, SectorAssignment] = {}
    for aircraft_id in sorted(snapshot.keys()):
        if cancel_event is not None and cancel_event.is_set():
            raise ComputationTimeout(cfg.cycle_deadline_s)
        assignments[aircraft_id] = assign_aircraft(
            snapshot[aircraft_id],
            sectors,
            complexities.get(aircraft_id, 0.0),
            previous_sector_id=prior.get(aircraft_id, ""),
            config=cfg,
        )
    for move in rebalance(snapshot, sectors, complexities, assignments, cfg, cancel_event):
        assignments[move.aircraft_id] = move
    return [assignments[aircraft_id] for aircraft_id in sorted(assignments)]
