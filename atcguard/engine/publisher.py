#!/usr/bin/env python3
"""Atomic snapshot publication with bounded per-subscriber delta queues."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from atcguard.contracts.events import EngineSnapshot, SnapshotDelta


LOGGER = logging.getLogger(__name__)


def _diff(
    previous: Sequence[Any],
    current: Sequence[Any],
    key: Callable[[Any], str],
) -> Tuple[List[Dict[str, Any]], List[str]]:
    before = {key(item): item for item in previous}
    after = {key(item): item for item in current}
    upserted = [after[k].to_dict() for k in sorted(after) if before.get(k) != after[k]]
    removed = sorted(k for k in before if k not in after)
    return upserted, removed


def compute_delta(previous: Optional[EngineSnapshot], current: EngineSnapshot) -> SnapshotDelta:
    """Changes from ``previous`` to ``current``; a full delta when there is no previous."""

    prev_conflicts = previous.conflicts if previous is not None else ()
    prev_sectors = previous.sectors if previous is not None else ()
    prev_alerts = previous.alerts if previous is not None else ()
    prev_assignments = previous.sector_assignments if previous is not None else ()
    conflicts_upserted, conflicts_removed = _diff(prev_conflicts, current.conflicts, lambda c: c.conflict_id)
    sectors_upserted, sectors_removed = _diff(prev_sectors, current.sectors, lambda s: s.sector_id)
    alerts_upserted, alerts_removed = _diff(prev_alerts, current.alerts, lambda a: a.alert_id)
    assignments_upserted, assignments_removed = _diff(
        prev_assignments, current.sector_assignments, lambda item: item.aircraft_id
    )
    return SnapshotDelta(
        generation=current.generation,
        generated_at_utc=current.generated_at_utc,
        full=previous is None,
        conflicts_upserted=conflicts_upserted,
        conflicts_removed=conflicts_removed,
        sectors_upserted=sectors_upserted,
        sectors_removed=sectors_removed,
        alerts_upserted=alerts_upserted,
        alerts_removed=alerts_removed,
        assignments_upserted=assignments_upserted,
        assignments_removed=assignments_removed,
        stats=current.stats.to_dict(),
    )


class Subscription:
    """A consumer's view of the delta stream. Closing it never affects the engine."""

    def __init__(self, publisher: "SnapshotPublisher", maxsize: int) -> None:
        self._publisher = publisher
        self._queue: "queue.Queue[SnapshotDelta]" = queue.Queue(maxsize=max(1, int(maxsize)))
        self._lock = threading.Lock()
        self._closed = threading.Event()
        self.resync_count = 0

    def _offer(self, delta: SnapshotDelta, snapshot: EngineSnapshot) -> None:
        if self._closed.is_set():
            return
        with self._lock:
            try:
                self._queue.put_nowait(delta)
                return
            except queue.Full:
                pass
            while True:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    break
            self._queue.put_nowait(compute_delta(None, snapshot))
            self.resync_count += 1
        LOGGER.warning("Subscriber queue overflow; resynchronised at generation %d", snapshot.generation)

    def get(self, timeout: Optional[float] = None) -> Optional[SnapshotDelta]:
        if self._closed.is_set() and self._queue.empty():
            return None
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self._publisher._detach(self)

    def __iter__(self) -> Iterator[SnapshotDelta]:
        while not self._closed.is_set():
            delta = self.get(timeout=0.5)
            if delta is not None:
                yield delta

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class SnapshotPublisher:
    def __init__(self, subscriber_queue_size: int = 64) -> None:
        self._cond = threading.Condition()
        self._current: Optional[EngineSnapshot] = None
        self._subscribers: List[Subscription] = []
        self._queue_size = int(subscriber_queue_size)

    def publish(self, snapshot: EngineSnapshot) -> SnapshotDelta:
        with self._cond:
            previous = self._current
            if previous is not None and snapshot.generation <= previous.generation:
                raise ValueError(
                    f"generation {snapshot.generation} does not advance current {previous.generation}"
                )
            self._current = snapshot
            subscribers = list(self._subscribers)
            self._cond.notify_all()
        delta = compute_delta(previous, snapshot)
        for subscription in subscribers:
            subscription._offer(delta, snapshot)
        return delta

    def current(self, timeout: Optional[float] = None) -> Optional[EngineSnapshot]:
        """Latest snapshot; waits up to ``timeout`` seconds for the first one."""

        with self._cond:
            if self._current is None and timeout:
                self._cond.wait_for(lambda: self._current is not None, timeout=float(timeout))
            return self._current

    def wait_for_generation(self, generation: int, timeout: float) -> Optional[EngineSnapshot]:
        with self._cond:
            reached = self._cond.wait_for(
                lambda: self._current is not None and self._current.generation >= generation,
                timeout=float(timeout),
            )
            return self._current if reached else None

    @property
    def generation(self) -> int:
        current = self._current
        return current.generation if current is not None else 0

    def subscribe(self) -> Subscription:
        with self._cond:
            subscription = Subscription(self, self._queue_size)
            if self._current is not None:
                subscription._offer(compute_delta(None, self._current), self._current)
            self._subscribers.append(subscription)
        return subscription

    def _detach(self, subscription: Subscription) -> None:
        with self._cond:
            self._subscribers = [item for item in self._subscribers if item is not subscription]

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
