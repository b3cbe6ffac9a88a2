#!/usr/bin/env python3
"""Sector workload: aircraft count, complexity score and utilization status."""

from __future__ import annotations

import threading
from collections import Counter
from dataclasses import replace
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from atcguard.airspace.aircraft_types import base_complexity_weight
from atcguard.airspace.partition import sector_members
from atcguard.contracts.events import Conflict
from atcguard.contracts.traffic import (
    STATUS_CRITICAL,
    STATUS_NORMAL,
    STATUS_WARNING,
    UNSECTORED_ID,
    Sector,
    Track,
    unsectored_sector,
)
from atcguard.engine.config import EngineConfig


def aircraft_complexity(track: Track, conflict_count: int, config: EngineConfig) -> float:
    """Type base weight + per-conflict increment + vertical-rate term."""

    return (
        base_complexity_weight(track.aircraft_type)
        + float(config.conflict_complexity_increment) * int(conflict_count)
        + float(config.vertical_rate_complexity_per_fpm) * abs(float(track.vertical_rate_fpm))
    )


def aircraft_complexities(
    snapshot: Mapping[str, Track],
    conflicts: Iterable[Conflict] = (),
    config: Optional[EngineConfig] = None,
) -> Dict[str, float]:
    cfg = config or EngineConfig()
    conflict_counts: Counter = Counter()
    for conflict in conflicts:
        conflict_counts[conflict.aircraft_a] += 1
        conflict_counts[conflict.aircraft_b] += 1
    return {
        aircraft_id: aircraft_complexity(track, conflict_counts[aircraft_id], cfg)
        for aircraft_id, track in snapshot.items()
    }


def classify_status(utilization: float, complexity_utilization: float, config: EngineConfig) -> str:
    if utilization > config.status_critical_ratio or complexity_utilization > config.status_critical_ratio:
        return STATUS_CRITICAL
    if utilization > config.status_warning_ratio or complexity_utilization > config.status_warning_ratio:
        return STATUS_WARNING
    return STATUS_NORMAL


def evaluate(
    snapshot: Mapping[str, Track],
    sectors: Sequence[Sector],
    conflicts: Iterable[Conflict] = (),
    config: Optional[EngineConfig] = None,
    cancel_event: Optional[threading.Event] = None,
) -> List[Sector]:
    cfg = config or EngineConfig()
    members = sector_members(snapshot, sectors, cancel_event=cancel_event, deadline_s=cfg.cycle_deadline_s)
    complexities = aircraft_complexities(snapshot, conflicts, cfg)

    def _complexity(ids: Sequence[str]) -> float:
        return float(sum(complexities[aid] for aid in ids))

    evaluated: List[Sector] = []
    for sector in sorted(sectors, key=lambda s: s.sector_id):
        ids = members.get(sector.sector_id, [])
        count = len(ids)
        complexity = _complexity(ids)
        utilization = count / float(sector.max_aircraft) if sector.max_aircraft > 0 else 0.0
        complexity_utilization = complexity / float(sector.max_complexity) if sector.max_complexity > 0 else 0.0
        evaluated.append(
            replace(
                sector,
                current_aircraft=count,
                current_complexity=complexity,
                utilization=utilization,
                complexity_utilization=complexity_utilization,
                status=classify_status(utilization, complexity_utilization, cfg),
                aircraft_ids=tuple(ids),
            )
        )

    unsectored_ids = members.get(UNSECTORED_ID)
    if unsectored_ids:
        evaluated.append(
            replace(
                unsectored_sector(),
                current_aircraft=len(unsectored_ids),
                current_complexity=_complexity(unsectored_ids),
                aircraft_ids=tuple(unsectored_ids),
            )
        )
    return evaluated
