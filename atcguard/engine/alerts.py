#!/usr/bin/env python3
"""Keyed alert lifecycle for conflicts, overloaded sectors and cycle failures."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional, Tuple, Union

from atcguard.contracts.events import (
    ALERT_ERROR,
    ALERT_WARNING,
    PRIORITY_CRITICAL,
    PRIORITY_EMERGENCY,
    PRIORITY_HIGH,
    PRIORITY_LOW,
    PRIORITY_MEDIUM,
    SEVERITY_CRITICAL,
    SEVERITY_RANK,
    SOURCE_CONFLICT,
    SOURCE_SECTOR,
    SOURCE_SYSTEM,
    URGENCY_RANK,
    Alert,
    Conflict,
)
from atcguard.contracts.traffic import STATUS_CRITICAL, STATUS_WARNING, Sector


LOGGER = logging.getLogger(__name__)

SYSTEM_TIMEOUT_ALERT_ID = "system:cycle-timeout"

Timestamp = Union[datetime, str]


def conflict_alert_id(conflict_id: str) -> str:
    return f"conflict:{conflict_id}"


def sector_alert_id(sector_id: str) -> str:
    return f"sector:{sector_id}"


def _iso(value: Timestamp) -> str:
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    return str(value)


def conflict_priority(conflict: Conflict, escalated: bool = False) -> int:
    """Priority from severity/urgency on 1..4, one level higher when escalated."""

    base = max(
        SEVERITY_RANK.get(conflict.severity, PRIORITY_LOW),
        URGENCY_RANK.get(conflict.urgency, 0) + 1,
    )
    base = min(max(base, PRIORITY_LOW), PRIORITY_CRITICAL)
    if escalated:
        return min(base + 1, PRIORITY_EMERGENCY)
    return base


def _conflict_message(conflict: Conflict, escalated: bool) -> str:
    text = (
        f"{conflict.severity.upper()} {conflict.conflict_type} conflict "
        f"{conflict.aircraft_a}/{conflict.aircraft_b} in {conflict.sector_id}: "
        f"{conflict.min_horizontal_nm:.2f} nm / {conflict.vertical_separation_ft:.0f} ft "
        f"in {conflict.time_to_conflict_s:.0f} s"
    )
    if escalated:
        text += " (no validated resolution)"
    return text


class AlertDispatcher:
    """One alert per conflict pair and per non-normal sector, updated in place each cycle."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._alerts: Dict[str, Alert] = {}

    def _merged(
        self,
        alert_id: str,
        kind: str,
        message: str,
        source_type: str,
        source_id: str,
        priority: int,
        escalated: bool,
        now_iso: str,
    ) -> Alert:
        previous = self._alerts.get(alert_id)
        if previous is None:
            return Alert(
                alert_id=alert_id,
                kind=kind,
                message=message,
                source_type=source_type,
                source_id=source_id,
                priority=priority,
                created_at_utc=now_iso,
                updated_at_utc=now_iso,
                escalated=escalated,
            )
        acknowledged = previous.acknowledged and priority <= previous.priority
        if (
            previous.kind == kind
            and previous.message == message
            and previous.priority == priority
            and previous.escalated == escalated
            and previous.acknowledged == acknowledged
        ):
            return previous
        return replace(
            previous,
            kind=kind,
            message=message,
            priority=priority,
            escalated=escalated,
            acknowledged=acknowledged,
            updated_at_utc=now_iso,
        )

    def dispatch(
        self,
        conflicts: Iterable[Conflict],
        sectors: Iterable[Sector],
        now_utc: Timestamp,
    ) -> Tuple[Alert, ...]:
        now_iso = _iso(now_utc)
        with self._lock:
            desired: Dict[str, Alert] = {}
            for conflict in conflicts:
                escalated = not conflict.has_validated_resolution
                priority = conflict_priority(conflict, escalated)
                kind = ALERT_ERROR if (conflict.severity == SEVERITY_CRITICAL or escalated) else ALERT_WARNING
                alert_id = conflict_alert_id(conflict.conflict_id)
                desired[alert_id] = self._merged(
                    alert_id,
                    kind,
                    _conflict_message(conflict, escalated),
                    SOURCE_CONFLICT,
                    conflict.conflict_id,
                    priority,
                    escalated,
                    now_iso,
                )

            for sector in sectors:
                if sector.status not in (STATUS_WARNING, STATUS_CRITICAL):
                    continue
                critical = sector.status == STATUS_CRITICAL
                alert_id = sector_alert_id(sector.sector_id)
                message = (
                    f"Sector {sector.sector_id} {sector.status}: {sector.current_aircraft}/{sector.max_aircraft} aircraft, "
                    f"complexity {sector.current_complexity:.1f}/{sector.max_complexity:.1f}"
                )
                desired[alert_id] = self._merged(
                    alert_id,
                    ALERT_ERROR if critical else ALERT_WARNING,
                    message,
                    SOURCE_SECTOR,
                    sector.sector_id,
                    PRIORITY_HIGH if critical else PRIORITY_MEDIUM,
                    False,
                    now_iso,
                )

            for alert_id, alert in self._alerts.items():
                if alert.source_type == SOURCE_SYSTEM:
                    desired[alert_id] = alert

            closed = sorted(set(self._alerts) - set(desired))
            if closed:
                LOGGER.info("Closed %d alerts: %s", len(closed), ", ".join(closed))
            self._alerts = desired
        return self.current()

    def acknowledge(self, alert_id: str) -> Optional[Alert]:
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                return None
            if not alert.acknowledged:
                alert = replace(alert, acknowledged=True)
                updated = dict(self._alerts)
                updated[alert_id] = alert
                self._alerts = updated
        return alert

    def raise_system_alert(self, message: str, now_utc: Timestamp) -> Alert:
        now_iso = _iso(now_utc)
        with self._lock:
            alert = self._merged(
                SYSTEM_TIMEOUT_ALERT_ID,
                ALERT_ERROR,
                message,
                SOURCE_SYSTEM,
                "cycle",
                PRIORITY_CRITICAL,
                False,
                now_iso,
            )
            updated = dict(self._alerts)
            updated[SYSTEM_TIMEOUT_ALERT_ID] = alert
            self._alerts = updated
        return alert

    def clear_system_alert(self) -> bool:
        with self._lock:
            if SYSTEM_TIMEOUT_ALERT_ID not in self._alerts:
                return False
            updated = dict(self._alerts)
            del updated[SYSTEM_TIMEOUT_ALERT_ID]
            self._alerts = updated
        LOGGER.info("Cleared %s", SYSTEM_TIMEOUT_ALERT_ID)
        return True

    def get(self, alert_id: str) -> Optional[Alert]:
        return self._alerts.get(alert_id)

    def current(self) -> Tuple[Alert, ...]:
        alerts = self._alerts
        return tuple(sorted(alerts.values(), key=lambda a: (-a.priority, a.alert_id)))
