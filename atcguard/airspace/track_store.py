#!/usr/bin/env python3
"""Latest-state track store with sequence-guarded, replace-on-write updates."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from atcguard.airspace.validation import validate_intent, validate_track
from atcguard.contracts.errors import StaleUpdate, ValidationError
from atcguard.contracts.traffic import FlightIntent, Track


LOGGER = logging.getLogger(__name__)


def _parse_iso_utc(value: str) -> Optional[datetime]:
    text = str(value or "").strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class TrackStore:
    """Holds the latest validated Track per aircraft.

    The internal mappings are never mutated in place: every write builds a new
    dict and swaps the reference under a short lock, so a mapping handed out by
    ``snapshot()`` stays a consistent point-in-time view.
    """

    def __init__(self, ceiling_ft: float = 60000.0) -> None:
        self._ceiling_ft = float(ceiling_ft)
        self._lock = threading.Lock()
        self._tracks: Dict[str, Track] = {}
        self._intents: Dict[str, FlightIntent] = {}
        self.accepted_count = 0
        self.stale_count = 0
        self.rejected_count = 0

    def upsert(self, track: Track) -> Track:
        try:
            validate_track(track, ceiling_ft=self._ceiling_ft)
        except ValidationError:
            with self._lock:
                self.rejected_count += 1
            raise

        with self._lock:
            stored = self._tracks.get(track.aircraft_id)
            if stored is not None and track.sequence <= stored.sequence:
                self.stale_count += 1
                raise StaleUpdate(track.aircraft_id, stored.sequence, track.sequence)
            updated = dict(self._tracks)
            updated[track.aircraft_id] = track
            self._tracks = updated
            self.accepted_count += 1
        return track

    def record_rejected(self) -> None:
        with self._lock:
            self.rejected_count += 1

    def get(self, aircraft_id: str) -> Optional[Track]:
        return self._tracks.get(aircraft_id)

    def remove(self, aircraft_id: str) -> bool:
        with self._lock:
            if aircraft_id not in self._tracks:
                return False
            updated = dict(self._tracks)
            del updated[aircraft_id]
            self._tracks = updated
            if aircraft_id in self._intents:
                intents = dict(self._intents)
                del intents[aircraft_id]
                self._intents = intents
        return True

    def prune(self, now_utc: datetime, max_age_s: float) -> List[str]:
        """Drop tracks whose last update is older than max_age_s."""

        current = self._tracks
        expired: List[str] = []
        for aircraft_id, track in current.items():
            ts = _parse_iso_utc(track.timestamp_utc)
            if ts is None:
                continue
            if (now_utc - ts).total_seconds() > float(max_age_s):
                expired.append(aircraft_id)
        for aircraft_id in sorted(expired):
            self.remove(aircraft_id)
        if expired:
            LOGGER.info("Pruned %d expired tracks: %s", len(expired), ", ".join(sorted(expired)))
        return sorted(expired)

    def set_intent(self, intent: FlightIntent) -> FlightIntent:
        validate_intent(intent)
        with self._lock:
            updated = dict(self._intents)
            updated[intent.aircraft_id] = intent
            self._intents = updated
        return intent

    def clear_intent(self, aircraft_id: str) -> bool:
        with self._lock:
            if aircraft_id not in self._intents:
                return False
            updated = dict(self._intents)
            del updated[aircraft_id]
            self._intents = updated
        return True

    def snapshot(self) -> Mapping[str, Track]:
        with self._lock:
            current = self._tracks
        return MappingProxyType(current)

    def intents_snapshot(self) -> Mapping[str, FlightIntent]:
        with self._lock:
            current = self._intents
        return MappingProxyType(current)

    def __len__(self) -> int:
        return len(self._tracks)
