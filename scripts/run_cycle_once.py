#!/usr/bin/env python3
"""Run a single detection cycle over a JSON traffic scenario and print the snapshot."""

from __future__ import annotations

import argparse
import json
import logging
import math
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from atcguard.airspace.validation import parse_intent, parse_sector  # noqa: E402
from atcguard.contracts.errors import ComputationTimeout  # noqa: E402
from atcguard.engine.config import EngineConfig  # noqa: E402
from atcguard.engine.cycle import AirspaceEngine  # noqa: E402


DEMO_START_UTC = "2026-03-01T12:00:00Z"


def _parse_utc(value: str) -> datetime:
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _track(aircraft_id: str, aircraft_type: str, lat: float, lon: float, alt: float, gs: float, hdg: float, vr: float = 0.0) -> Dict[str, Any]:
    return {
        "aircraft_id": aircraft_id,
        "callsign": aircraft_id,
        "aircraft_type": aircraft_type,
        "lat": lat,
        "lon": lon,
        "altitude_ft": alt,
        "ground_speed_kts": gs,
        "heading_deg": hdg,
        "vertical_rate_fpm": vr,
        "timestamp_utc": DEMO_START_UTC,
        "sequence": 1,
    }


def demo_scenario() -> Dict[str, Any]:
    """Head-on pair at FL200, a vertically separated crossing pair, and a stray climber."""

    lon_10nm = 10.0 / (60.0 * math.cos(math.radians(40.0)))
    return {
        "start_utc": DEMO_START_UTC,
        "sectors": [
            {
                "sector_id": "ZNY-W",
                "name": "New York West",
                "bounds": {"min_lat": 39.5, "min_lon": -74.5, "max_lat": 40.5, "max_lon": -73.8},
                "max_aircraft": 12,
                "max_complexity": 30.0,
            },
            {
                "sector_id": "ZNY-E",
                "name": "New York East",
                "bounds": {"min_lat": 39.5, "min_lon": -73.8, "max_lat": 40.5, "max_lon": -73.0},
                "max_aircraft": 12,
                "max_complexity": 30.0,
            },
        ],
        "tracks": [
            _track("AAL101", "B738", 40.0, -74.0, 20000.0, 450.0, 90.0),
            _track("UAL202", "B738", 40.0, -74.0 + lon_10nm, 20000.0, 450.0, 270.0),
            _track("DAL303", "A320", 40.2, -73.7, 24000.0, 430.0, 180.0),
            _track("JBU404", "A320", 40.1, -73.8, 26000.0, 430.0, 90.0),
            _track("N512CP", "C172", 41.0, -72.5, 4500.0, 110.0, 45.0, 500.0),
        ],
        "intents": [],
    }


def run_scenario(scenario: Dict[str, Any], config: EngineConfig) -> Dict[str, Any]:
    sectors = [parse_sector(item) for item in scenario.get("sectors") or []]
    engine = AirspaceEngine(config=config, sectors=sectors)
    try:
        rejected: List[Dict[str, Any]] = []
        for raw in scenario.get("tracks") or []:
            result = engine.ingest_payload(raw)
            if not result.accepted:
                rejected.append(result.to_dict())
        for raw in scenario.get("intents") or []:
            engine.ingest_intent(parse_intent(raw))
        now = _parse_utc(str(scenario.get("start_utc") or DEMO_START_UTC))
        snapshot = engine.run_cycle(now=now)
    finally:
        engine.close()
    payload = snapshot.to_dict()
    payload["rejected_updates"] = rejected
    return payload


def main() -> int:
    parser = argparse.ArgumentParser(description="Run one airspace detection cycle.")
    parser.add_argument("--scenario", type=str, default=None, help="JSON file with sectors, tracks and intents.")
    parser.add_argument("--output", type=str, default=None, help="Write the snapshot JSON here instead of stdout.")
    parser.add_argument("--deadline-s", type=float, default=10.0, help="Cycle deadline for offline runs.")
    parser.add_argument("--summary", action="store_true", help="Print one line per conflict instead of full JSON.")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.scenario:
        scenario = json.loads(Path(args.scenario).read_text(encoding="utf-8"))
    else:
        scenario = demo_scenario()
    config = EngineConfig.from_env(cycle_deadline_s=args.deadline_s)

    try:
        payload = run_scenario(scenario, config)
    except ComputationTimeout as err:
        print(f"[ERROR] {err}")
        return 2

    if args.summary:
        for conflict in payload["conflicts"]:
            top = conflict["resolutions"][0]["description"] if conflict["resolutions"] else "no validated resolution"
            print(
                f"{conflict['conflict_id']:<16} {conflict['severity']:<9} {conflict['urgency']:<9} "
                f"ttc={conflict['time_to_conflict_s']:.0f}s min={conflict['min_horizontal_nm']:.2f}nm -> {top}"
            )
        for sector in payload["sectors"]:
            print(f"{sector['sector_id']:<16} {sector['status']:<9} aircraft={sector['current_aircraft']} util={sector['utilization']:.2f}")
        return 0

    text = json.dumps(payload, indent=2) + "\n"
    if args.output:
        out_path = Path(args.output)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(text, encoding="utf-8")
        print(f"[INFO] Wrote {out_path}")
    else:
        sys.stdout.write(text)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
