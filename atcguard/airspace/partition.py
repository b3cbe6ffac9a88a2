#!/usr/bin/env python3
"""Sector partitioning for conflict candidate generation."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple

from atcguard.airspace.geo import point_in_polygon, polygon_bounds, within_bounds_margin
from atcguard.contracts.errors import ComputationTimeout
from atcguard.contracts.traffic import UNSECTORED_ID, Sector, Track


LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Partition:
    sector_id: str
    aircraft_ids: Tuple[str, ...]


def locate_sector(lat: float, lon: float, sectors: Sequence[Sector]) -> Optional[str]:
    for sector in sorted(sectors, key=lambda s: s.sector_id):
        if point_in_polygon(lat, lon, sector.boundary):
            return sector.sector_id
    return None


def sector_members(
    tracks: Mapping[str, Track],
    sectors: Sequence[Sector],
    cancel_event: Optional[threading.Event] = None,
    deadline_s: float = 0.0,
) -> Dict[str, List[str]]:
    """Strict polygon membership; aircraft outside every sector land in UNSECTORED."""

    members: Dict[str, List[str]] = {sector.sector_id: [] for sector in sectors}
    unsectored: List[str] = []
    for aircraft_id in sorted(tracks.keys()):
        if cancel_event is not None and cancel_event.is_set():
            raise ComputationTimeout(deadline_s)
        track = tracks[aircraft_id]
        inside = False
        for sector in sectors:
            if point_in_polygon(track.lat, track.lon, sector.boundary):
                members[sector.sector_id].append(aircraft_id)
                inside = True
        if not inside:
            unsectored.append(aircraft_id)
    if unsectored:
        members[UNSECTORED_ID] = unsectored
    return members


def partition_by_sector(
    tracks: Mapping[str, Track],
    sectors: Sequence[Sector],
    margin_nm: float,
) -> List[Partition]:
    """Sector partitions widened by the margin, plus UNSECTORED.

    UNSECTORED holds every aircraft not strictly inside a polygon, including
    those also pulled into a sector by the margin, so two aircraft outside all
    sectors always share a partition.
    """

    partitions: List[Partition] = []
    inside_any: Set[str] = set()
    ordered_ids = sorted(tracks.keys())

    for sector in sorted(sectors, key=lambda s: s.sector_id):
        if len(sector.boundary) < 3:
            continue
        bounds = polygon_bounds(sector.boundary)
        member_ids: List[str] = []
        for aircraft_id in ordered_ids:
            track = tracks[aircraft_id]
            if point_in_polygon(track.lat, track.lon, sector.boundary):
                member_ids.append(aircraft_id)
                inside_any.add(aircraft_id)
            elif within_bounds_margin(track.lat, track.lon, bounds, margin_nm):
                member_ids.append(aircraft_id)
        if member_ids:
            partitions.append(Partition(sector_id=sector.sector_id, aircraft_ids=tuple(member_ids)))

    leftover = tuple(aircraft_id for aircraft_id in ordered_ids if aircraft_id not in inside_any)
    if leftover:
        partitions.append(Partition(sector_id=UNSECTORED_ID, aircraft_ids=leftover))
    return partitions


def assign_pairs(partitions: Sequence[Partition]) -> List[Tuple[Partition, List[Tuple[str, str]]]]:
    """Give each unordered pair to the first partition holding both aircraft."""

    seen: Set[Tuple[str, str]] = set()
    output: List[Tuple[Partition, List[Tuple[str, str]]]] = []
    total_pairs = 0
    max_pairs = 0

    for partition in partitions:
        ids = partition.aircraft_ids
        pairs: List[Tuple[str, str]] = []
        for i in range(len(ids)):
            for j in range(i + 1, len(ids)):
                pair = (ids[i], ids[j]) if ids[i] <= ids[j] else (ids[j], ids[i])
                if pair in seen:
                    continue
                seen.add(pair)
                pairs.append(pair)
        output.append((partition, pairs))
        total_pairs += len(pairs)
        max_pairs = max(max_pairs, len(pairs))

    LOGGER.debug(
        "Candidate generation summary: partitions=%d, total_pairs=%d, max_pairs_per_partition=%d",
        len(partitions),
        total_pairs,
        max_pairs,
    )
    return output
