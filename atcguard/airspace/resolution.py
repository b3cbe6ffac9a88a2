#!/usr/bin/env python3
"""Deterministic resolution advisories: altitude, then speed, then heading maneuvers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from atcguard.airspace.aircraft_types import resolve_constraints
from atcguard.airspace.conflict import assess_pair, could_conflict
from atcguard.contracts.errors import ResolutionInfeasible
from atcguard.contracts.events import (
    MANEUVER_ALTITUDE,
    MANEUVER_HEADING,
    MANEUVER_SPEED,
    MANEUVER_TIER,
    Conflict,
    ResolutionSuggestion,
)
from atcguard.contracts.traffic import FlightIntent, PerformanceConstraints, Track
from atcguard.engine.config import EngineConfig


LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Candidate:
    maneuver: str
    aircraft_id: str
    magnitude: float
    validated: bool
    resulting_separation: float


def apply_maneuver(track: Track, maneuver: str, magnitude: float) -> Track:
    """Hypothetical copy of the track with a cleared maneuver applied."""

    if maneuver == MANEUVER_ALTITUDE:
        return replace(track, altitude_ft=float(track.altitude_ft) + float(magnitude), vertical_rate_fpm=0.0)
    if maneuver == MANEUVER_SPEED:
        return replace(track, ground_speed_kts=max(0.0, float(track.ground_speed_kts) + float(magnitude)))
    if maneuver == MANEUVER_HEADING:
        return replace(track, heading_deg=(float(track.heading_deg) + float(magnitude)) % 360.0)
    raise ValueError(f"unknown maneuver: {maneuver}")


def maneuver_intent(intent: Optional[FlightIntent], maneuver: str, magnitude: float) -> Optional[FlightIntent]:
    """The route an aircraft keeps flying under a maneuver.

    Altitude and speed changes keep the route with its targets shifted by the
    same amount. A heading vector takes the aircraft off its route.
    """

    if intent is None or maneuver == MANEUVER_HEADING:
        return None
    if maneuver == MANEUVER_ALTITUDE:
        waypoints = tuple(
            replace(wp, target_altitude_ft=float(wp.target_altitude_ft) + float(magnitude))
            if wp.target_altitude_ft is not None
            else wp
            for wp in intent.waypoints
        )
    elif maneuver == MANEUVER_SPEED:
        waypoints = tuple(
            replace(wp, target_speed_kts=max(1.0, float(wp.target_speed_kts) + float(magnitude)))
            if wp.target_speed_kts is not None
            else wp
            for wp in intent.waypoints
        )
    else:
        raise ValueError(f"unknown maneuver: {maneuver}")
    return replace(intent, waypoints=waypoints)


def apply_suggestion(track: Track, suggestion: ResolutionSuggestion) -> Track:
    if suggestion.aircraft_id != track.aircraft_id:
        raise ValueError(f"suggestion targets {suggestion.aircraft_id}, not {track.aircraft_id}")
    return apply_maneuver(track, suggestion.maneuver, suggestion.magnitude)


def _vertical_margin(track: Track, constraints: PerformanceConstraints) -> float:
    climb_room = float(constraints.max_altitude_ft) - float(track.altitude_ft)
    descent_room = float(track.altitude_ft) - float(constraints.min_altitude_ft)
    return max(climb_room, descent_room)


def _altitude_magnitudes(track: Track, constraints: PerformanceConstraints, config: EngineConfig) -> List[float]:
    ceiling = min(float(constraints.max_altitude_ft), float(config.altitude_ceiling_ft))
    floor = max(0.0, float(constraints.min_altitude_ft))
    out: List[float] = []
    for k in range(1, int(config.max_altitude_steps) + 1):
        delta = k * float(config.min_vertical_sep_ft)
        for signed in (delta, -delta):
            target = float(track.altitude_ft) + signed
            if floor <= target <= ceiling:
                out.append(signed)
    return out


def _speed_magnitudes(track: Track, constraints: PerformanceConstraints, config: EngineConfig) -> List[float]:
    out: List[float] = []
    for k in range(1, int(config.max_speed_steps) + 1):
        delta = k * float(config.speed_step_kts)
        for signed in (delta, -delta):
            target = float(track.ground_speed_kts) + signed
            if float(constraints.min_speed_kts) <= target <= float(constraints.max_speed_kts):
                out.append(signed)
    return out


def _heading_magnitudes(config: EngineConfig) -> List[float]:
    out: List[float] = []
    for k in range(1, int(config.max_heading_steps) + 1):
        delta = k * float(config.heading_step_deg)
        out.extend((delta, -delta))
    return out


class _Validator:
    """Resimulates a maneuvered aircraft against its partner and its sector neighbours."""

    def __init__(
        self,
        tracks: Mapping[str, Track],
        intents: Mapping[str, FlightIntent],
        neighbor_ids: Sequence[str],
        config: EngineConfig,
    ) -> None:
        self._tracks = tracks
        self._intents = intents
        self._neighbor_ids = list(neighbor_ids)
        self._config = config
        self._baseline: Dict[str, Set[str]] = {}

    def intent_for(self, aircraft_id: str) -> Optional[FlightIntent]:
        return self._intents.get(aircraft_id)

    def _already_conflicting(self, track: Track, exclude: Set[str]) -> Set[str]:
        cached = self._baseline.get(track.aircraft_id)
        if cached is not None:
            return cached
        found: Set[str] = set()
        for nid in self._neighbor_ids:
            if nid in exclude:
                continue
            other = self._tracks.get(nid)
            own_intent = self._intents.get(track.aircraft_id)
            other_intent = self._intents.get(nid)
            if other is None or not could_conflict(track, other, self._config, own_intent, other_intent):
                continue
            assessment = assess_pair(track, other, self._config, own_intent, other_intent)
            if assessment.violating:
                found.add(nid)
        self._baseline[track.aircraft_id] = found
        return found

    def check(
        self,
        original: Track,
        maneuvered: Track,
        maneuvered_intent: Optional[FlightIntent],
        partner: Track,
    ) -> Tuple[bool, float]:
        own = assess_pair(maneuvered, partner, self._config, maneuvered_intent, self._intents.get(partner.aircraft_id))
        if own.violating:
            return False, own.min_normalized_separation

        exclude = {original.aircraft_id, partner.aircraft_id}
        baseline = self._already_conflicting(original, exclude)
        for nid in self._neighbor_ids:
            if nid in exclude or nid in baseline:
                continue
            other = self._tracks.get(nid)
            other_intent = self._intents.get(nid)
            if other is None or not could_conflict(maneuvered, other, self._config, maneuvered_intent, other_intent):
                continue
            assessment = assess_pair(maneuvered, other, self._config, maneuvered_intent, other_intent)
            if assessment.violating:
                return False, own.min_normalized_separation
        return True, own.min_normalized_separation


def _run_tier(
    validator: _Validator,
    maneuver: str,
    track: Track,
    partner: Track,
    magnitudes: Iterable[float],
) -> Optional[_Candidate]:
    best: Optional[_Candidate] = None
    for magnitude in magnitudes:
        maneuvered = apply_maneuver(track, maneuver, magnitude)
        intent = maneuver_intent(validator.intent_for(track.aircraft_id), maneuver, magnitude)
        ok, separation = validator.check(track, maneuvered, intent, partner)
        if ok:
            return _Candidate(maneuver, track.aircraft_id, float(magnitude), True, separation)
        if best is None or separation > best.resulting_separation:
            best = _Candidate(maneuver, track.aircraft_id, float(magnitude), False, separation)
    return best


def _describe(candidate: _Candidate, track: Track) -> str:
    if candidate.maneuver == MANEUVER_ALTITUDE:
        verb = "Climb" if candidate.magnitude > 0 else "Descend"
        target = float(track.altitude_ft) + candidate.magnitude
        return f"{verb} {track.callsign} by {abs(candidate.magnitude):.0f} ft to {target:.0f} ft"
    if candidate.maneuver == MANEUVER_SPEED:
        verb = "Increase" if candidate.magnitude > 0 else "Reduce"
        target = float(track.ground_speed_kts) + candidate.magnitude
        return f"{verb} {track.callsign} speed by {abs(candidate.magnitude):.0f} kts to {target:.0f} kts"
    side = "right" if candidate.magnitude > 0 else "left"
    target = (float(track.heading_deg) + candidate.magnitude) % 360.0
    return f"Turn {track.callsign} {side} {abs(candidate.magnitude):.0f} deg to heading {target:03.0f}"


def propose(
    conflict: Conflict,
    snapshot: Mapping[str, Track],
    constraints: Optional[Mapping[str, PerformanceConstraints]] = None,
    config: Optional[EngineConfig] = None,
    intents: Optional[Mapping[str, FlightIntent]] = None,
    neighbors: Optional[Iterable[str]] = None,
) -> List[ResolutionSuggestion]:
    """Propose validated maneuvers for a conflict, highest priority first.

    ``neighbors`` lists the aircraft a maneuver must stay clear of (normally the
    conflict sector's members); it defaults to every other tracked aircraft.
    Returns an empty list when no candidate from any tier validates.
    """

    cfg = config or EngineConfig()
    intents = intents or {}
    constraints = constraints or {}
    track_a = snapshot.get(conflict.aircraft_a)
    track_b = snapshot.get(conflict.aircraft_b)
    if track_a is None or track_b is None:
        LOGGER.warning("Conflict %s references tracks absent from snapshot", conflict.conflict_id)
        return []

    def _constraints_for(track: Track) -> PerformanceConstraints:
        found = constraints.get(track.aircraft_id)
        if found is not None:
            return found
        return resolve_constraints(track, intents.get(track.aircraft_id))

    neighbor_ids = sorted(set(neighbors) if neighbors is not None else set(snapshot.keys()))
    validator = _Validator(snapshot, intents, neighbor_ids, cfg)
    cons_a = _constraints_for(track_a)
    cons_b = _constraints_for(track_b)

    candidates: List[_Candidate] = []

    if _vertical_margin(track_b, cons_b) > _vertical_margin(track_a, cons_a):
        vertical_track, vertical_partner, vertical_cons = track_b, track_a, cons_b
    else:
        vertical_track, vertical_partner, vertical_cons = track_a, track_b, cons_a
    altitude = _run_tier(
        validator,
        MANEUVER_ALTITUDE,
        vertical_track,
        vertical_partner,
        _altitude_magnitudes(vertical_track, vertical_cons, cfg),
    )
    if altitude is not None:
        candidates.append(altitude)

    for track, partner, cons in ((track_a, track_b, cons_a), (track_b, track_a, cons_b)):
        speed = _run_tier(validator, MANEUVER_SPEED, track, partner, _speed_magnitudes(track, cons, cfg))
        if speed is not None:
            candidates.append(speed)
    for track, partner in ((track_a, track_b), (track_b, track_a)):
        heading = _run_tier(validator, MANEUVER_HEADING, track, partner, _heading_magnitudes(cfg))
        if heading is not None:
            candidates.append(heading)

    if not any(item.validated for item in candidates):
        LOGGER.info("No validated resolution for conflict %s (%d candidates tried)", conflict.conflict_id, len(candidates))
        return []

    candidates.sort(
        key=lambda item: (
            not item.validated,
            MANEUVER_TIER[item.maneuver],
            abs(item.magnitude),
            item.aircraft_id,
            -item.magnitude,
        )
    )
    by_id = {track_a.aircraft_id: track_a, track_b.aircraft_id: track_b}
    return [
        ResolutionSuggestion(
            maneuver=item.maneuver,
            aircraft_id=item.aircraft_id,
            magnitude=item.magnitude,
            priority=rank,
            resolves_without_new_conflict=item.validated,
            resulting_separation=item.resulting_separation,
            description=_describe(item, by_id[item.aircraft_id]),
        )
        for rank, item in enumerate(candidates, start=1)
    ]


def select_resolution(conflict: Conflict) -> ResolutionSuggestion:
    for suggestion in sorted(conflict.resolutions, key=lambda s: s.priority):
        if suggestion.resolves_without_new_conflict:
            return suggestion
    raise ResolutionInfeasible(conflict.conflict_id)
