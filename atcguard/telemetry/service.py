#!/usr/bin/env python3
"""Append-only JSONL sink for engine cycle and ingest events."""

from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional


EVENTS_FILENAME = "engine_events.jsonl"

_WRITE_LOCK = threading.Lock()


def emit_event(telemetry_dir: Path, event_type: str, payload: Dict[str, Any]) -> None:
    telemetry_dir.mkdir(parents=True, exist_ok=True)
    path = telemetry_dir / EVENTS_FILENAME
    record = {
        "event_type": event_type,
        "emitted_at_utc": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "payload": payload,
    }
    with _WRITE_LOCK:
        with path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(record, ensure_ascii=True) + "\n")


def read_events(telemetry_dir: Path, event_type: Optional[str] = None) -> List[Dict[str, Any]]:
    """Read back recorded events, skipping lines that do not parse."""

    path = telemetry_dir / EVENTS_FILENAME
    if not path.exists():
        return []
    records: List[Dict[str, Any]] = []
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line:
            continue
        try:
            parsed = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(parsed, dict):
            continue
        if event_type is not None and parsed.get("event_type") != event_type:
            continue
        records.append(parsed)
    return records
