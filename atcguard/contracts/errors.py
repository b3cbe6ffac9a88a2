"""Engine-specific exceptions."""

from __future__ import annotations

from typing import List, Optional


class AtcGuardError(Exception):
    """Base exception for all engine errors."""


class ValidationError(AtcGuardError):
    """Raised when a track, intent or sector payload is malformed or out of range."""

    def __init__(self, entity: str, details: List[str], entity_id: Optional[str] = None):
        self.entity = entity
        self.details = list(details)
        self.entity_id = entity_id
        label = f"{entity} {entity_id}" if entity_id else entity
        super().__init__(f"invalid {label}: {'; '.join(self.details)}")


class StaleUpdate(AtcGuardError):
    """Raised when a track update does not advance the stored sequence number."""

    def __init__(self, aircraft_id: str, stored_sequence: int, offered_sequence: int):
        self.aircraft_id = aircraft_id
        self.stored_sequence = stored_sequence
        self.offered_sequence = offered_sequence
        super().__init__(
            f"stale update for {aircraft_id}: sequence {offered_sequence} <= stored {stored_sequence}"
        )


class ComputationTimeout(AtcGuardError):
    """Raised when a detection cycle overruns its deadline and is discarded."""

    def __init__(self, deadline_s: float, elapsed_s: Optional[float] = None):
        self.deadline_s = deadline_s
        self.elapsed_s = elapsed_s
        if elapsed_s is None:
            super().__init__(f"cycle exceeded deadline of {deadline_s:.3f}s")
        else:
            super().__init__(f"cycle exceeded deadline of {deadline_s:.3f}s (elapsed {elapsed_s:.3f}s)")


class ResolutionInfeasible(AtcGuardError):
    """Raised when no validated maneuver exists for a conflict."""

    def __init__(self, conflict_id: str):
        self.conflict_id = conflict_id
        super().__init__(f"no validated resolution for conflict {conflict_id}")
