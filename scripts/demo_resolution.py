#!/usr/bin/env python3
"""Deterministic walkthrough: detect a head-on conflict, apply the top advisory, re-check."""

from __future__ import annotations

import argparse
import math
import sys
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from atcguard.airspace.conflict import assess_pair, detect  # noqa: E402
from atcguard.airspace.resolution import apply_suggestion, propose, select_resolution  # noqa: E402
from atcguard.contracts.errors import ResolutionInfeasible  # noqa: E402
from atcguard.contracts.traffic import Track  # noqa: E402
from atcguard.engine.config import EngineConfig  # noqa: E402


def _fmt(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, float):
        return f"{value:.6g}"
    return str(value)


def _head_on_pair(separation_nm: float, speed_kts: float, altitude_ft: float):
    lat = 40.0
    lon_offset = separation_nm / (60.0 * math.cos(math.radians(lat)))
    common = dict(aircraft_type="B738", altitude_ft=altitude_ft, ground_speed_kts=speed_kts, vertical_rate_fpm=0.0, timestamp_utc="2026-03-01T12:00:00Z", sequence=1)
    a = Track(aircraft_id="AAL101", callsign="AAL101", lat=lat, lon=-74.0, heading_deg=90.0, **common)
    b = Track(aircraft_id="UAL202", callsign="UAL202", lat=lat, lon=-74.0 + lon_offset, heading_deg=270.0, **common)
    return a, b


def main() -> int:
    parser = argparse.ArgumentParser(description="Run deterministic conflict-resolution demo.")
    parser.add_argument("--separation-nm", type=float, default=10.0)
    parser.add_argument("--speed-kts", type=float, default=450.0)
    parser.add_argument("--altitude-ft", type=float, default=20000.0)
    args = parser.parse_args()

    config = EngineConfig()
    a, b = _head_on_pair(args.separation_nm, args.speed_kts, args.altitude_ft)
    snapshot = {a.aircraft_id: a, b.aircraft_id: b}
    now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    conflicts = detect(snapshot, [], config=config, now_utc=now)
    if not conflicts:
        print("[INFO] No conflict detected.")
        return 0
    conflict = conflicts[0]
    print("[INFO] Conflict detected")
    for key in ("conflict_id", "severity", "urgency", "conflict_type", "time_to_conflict_s", "min_horizontal_nm", "vertical_separation_ft"):
        print(f"  {key:<24} {_fmt(getattr(conflict, key))}")

    suggestions = propose(conflict, snapshot, config=config)
    print(f"[INFO] {len(suggestions)} suggestions")
    for item in suggestions:
        flag = "validated" if item.resolves_without_new_conflict else "unvalidated"
        print(f"  #{item.priority} {item.maneuver:<8} {item.aircraft_id:<8} {_fmt(item.magnitude):>6} {flag:<12} {item.description}")

    try:
        top = select_resolution(replace(conflict, resolutions=tuple(suggestions)))
    except ResolutionInfeasible as err:
        print(f"[WARN] {err}")
        return 1

    maneuvered = apply_suggestion(snapshot[top.aircraft_id], top)
    other = b if top.aircraft_id == a.aircraft_id else a
    check = assess_pair(maneuvered, other, config)
    print("[INFO] After applying top suggestion")
    print(f"  violating                {check.violating}")
    print(f"  min_vertical_ft          {_fmt(min(s.vertical_ft for s in check.timeline))}")
    print(f"  min_horizontal_nm        {_fmt(min(s.horizontal_nm for s in check.timeline))}")
    return 0 if not check.violating else 1


if __name__ == "__main__":
    raise SystemExit(main())
