#!/usr/bin/env python3
"""Per-cycle detection and workload statistics."""

from __future__ import annotations

from collections import Counter
from typing import Sequence

from atcguard.contracts.events import URGENCY_IMMEDIATE, Conflict, CycleStats
from atcguard.contracts.traffic import Sector


def compute_cycle_stats(
    total_aircraft: int,
    conflicts: Sequence[Conflict],
    sectors: Sequence[Sector],
    cycle_duration_ms: float = 0.0,
    accepted_updates: int = 0,
    stale_updates: int = 0,
    rejected_updates: int = 0,
    timed_out_cycles: int = 0,
) -> CycleStats:
    total_conflicts = len(conflicts)
    by_severity = Counter(conflict.severity for conflict in conflicts)
    by_urgency = Counter(conflict.urgency for conflict in conflicts)
    mean_ttc = sum(c.time_to_conflict_s for c in conflicts) / total_conflicts if total_conflicts else 0.0
    mean_distance = sum(c.min_horizontal_nm for c in conflicts) / total_conflicts if total_conflicts else 0.0

    capacity_sectors = [s for s in sectors if not s.is_unsectored]
    mean_utilization = (
        sum(s.utilization for s in capacity_sectors) / len(capacity_sectors) if capacity_sectors else 0.0
    )
    most_loaded = None
    if capacity_sectors:
        top = max(capacity_sectors, key=lambda s: (max(s.utilization, s.complexity_utilization), s.sector_id))
        most_loaded = top.sector_id

    return CycleStats(
        total_aircraft=int(total_aircraft),
        total_conflicts=total_conflicts,
        conflict_rate=(total_conflicts / float(total_aircraft)) if total_aircraft else 0.0,
        conflicts_by_severity=dict(sorted(by_severity.items())),
        conflicts_by_urgency=dict(sorted(by_urgency.items())),
        mean_time_to_conflict_s=mean_ttc,
        mean_min_horizontal_nm=mean_distance,
        has_immediate_conflicts=any(c.urgency == URGENCY_IMMEDIATE for c in conflicts),
        unresolved_conflicts=sum(1 for c in conflicts if not c.has_validated_resolution),
        sectors_by_status=dict(sorted(Counter(s.status for s in capacity_sectors).items())),
        mean_sector_utilization=mean_utilization,
        most_loaded_sector=most_loaded,
        cycle_duration_ms=float(cycle_duration_ms),
        accepted_updates=int(accepted_updates),
        stale_updates=int(stale_updates),
        rejected_updates=int(rejected_updates),
        timed_out_cycles=int(timed_out_cycles),
    )
