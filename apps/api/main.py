#!/usr/bin/env python3
"""FastAPI boundary for the airspace engine: ingestion, snapshots, live updates."""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from atcguard.airspace.resolution import select_resolution  # noqa: E402
from atcguard.airspace.validation import parse_intent, parse_sector  # noqa: E402
from atcguard.contracts.errors import ComputationTimeout, ResolutionInfeasible, ValidationError  # noqa: E402
from atcguard.contracts.events import INGEST_INVALID, INGEST_STALE  # noqa: E402
from atcguard.contracts.versioning import ENGINE_MODEL_VERSION, SCHEMA_VERSION, SUPPORTED_REQUEST_SCHEMA_VERSIONS  # noqa: E402
from atcguard.engine.config import EngineConfig  # noqa: E402
from atcguard.engine.cycle import AirspaceEngine  # noqa: E402
from atcguard.engine.publisher import Subscription  # noqa: E402
from atcguard.telemetry.tracing import init_tracing_if_enabled, shutdown_tracing  # noqa: E402


logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
LOGGER = logging.getLogger(__name__)

app = FastAPI(title="ATCGuard API", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type"],
)

SSE_KEEPALIVE_S = 15.0


def _load_dotenv_file(path: Path) -> None:
    """Load KEY=VALUE lines into environment without overriding existing vars."""

    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue
        os.environ.setdefault(key, value.strip())


def _error(status_code: int, error: str, details: Optional[List[str]] = None) -> HTTPException:
    detail: Dict[str, Any] = {"schema_version": SCHEMA_VERSION, "error": error}
    if details is not None:
        detail["details"] = list(details)
    return HTTPException(status_code=status_code, detail=detail)


def _load_sectors_file(path: Path) -> List[Any]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    raw_sectors = payload.get("sectors") if isinstance(payload, dict) else payload
    return [parse_sector(item) for item in raw_sectors or []]


def _build_engine() -> AirspaceEngine:
    config = EngineConfig.from_env()
    sectors: List[Any] = []
    sectors_file = os.environ.get("ATCG_SECTORS_FILE", "").strip()
    if sectors_file:
        path = Path(sectors_file)
        if not path.is_absolute():
            path = REPO_ROOT / path
        if path.exists():
            sectors = _load_sectors_file(path)
            LOGGER.info("Loaded %d sectors from %s", len(sectors), path)
        else:
            LOGGER.warning("ATCG_SECTORS_FILE not found: %s", path)
    return AirspaceEngine(config=config, sectors=sectors)


_load_dotenv_file(REPO_ROOT / ".env")
init_tracing_if_enabled()

ENGINE = _build_engine()


def _autostart_enabled() -> bool:
    value = str(os.environ.get("ATCG_AUTOSTART", "true")).strip().lower()
    return value in {"1", "true", "yes", "on"}


@app.on_event("startup")
def _startup_engine() -> None:
    if _autostart_enabled():
        ENGINE.start()


@app.on_event("shutdown")
def _shutdown_engine() -> None:
    ENGINE.stop()
    shutdown_tracing()


def _validate_request(payload: Dict[str, Any]) -> None:
    if not isinstance(payload, dict):
        raise _error(422, "INVALID_REQUEST", ["request body must be a JSON object"])
    request_schema = str(payload.get("schema_version", SCHEMA_VERSION)).strip()
    if request_schema not in SUPPORTED_REQUEST_SCHEMA_VERSIONS:
        raise _error(422, "INVALID_REQUEST", [f"schema_version unsupported: {request_schema}"])


def _sse_stream(subscription: Subscription, keepalive_s: float = SSE_KEEPALIVE_S) -> Iterator[str]:
    """One ``data:`` frame per delta, a comment frame when idle."""

    try:
        while not subscription.closed:
            delta = subscription.get(timeout=keepalive_s)
            if delta is None:
                yield ": keep-alive\n\n"
                continue
            yield f"event: delta\nid: {delta.generation}\ndata: {json.dumps(delta.to_dict())}\n\n"
    finally:
        subscription.close()


@app.get("/health")
def get_health() -> Dict[str, Any]:
    current = ENGINE.snapshot()
    return {
        "status": "ok",
        "cycle_running": ENGINE.running,
        "generation": current.generation if current is not None else 0,
        "tracked_aircraft": len(ENGINE.store),
        "subscribers": ENGINE.publisher.subscriber_count,
        "model_version": ENGINE_MODEL_VERSION,
        "schema_version": SCHEMA_VERSION,
    }


@app.get("/config")
def get_config() -> Dict[str, Any]:
    return {"config": ENGINE.config.to_dict(), "model_version": ENGINE_MODEL_VERSION, "schema_version": SCHEMA_VERSION}


@app.get("/snapshot")
def get_snapshot(timeout_s: float = Query(1.0, ge=0.0, le=30.0)) -> Dict[str, Any]:
    current = ENGINE.snapshot(timeout=timeout_s)
    if current is None:
        raise _error(503, "SNAPSHOT_UNAVAILABLE", [f"no snapshot published within {timeout_s:.1f}s"])
    return current.to_dict()


@app.get("/updates")
def get_updates() -> StreamingResponse:
    subscription = ENGINE.subscribe()
    return StreamingResponse(
        _sse_stream(subscription),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.post("/ingest/tracks")
def post_track(payload: Dict[str, Any]) -> Dict[str, Any]:
    _validate_request(payload)
    result = ENGINE.ingest_payload(payload)
    if result.status == INGEST_INVALID:
        raise _error(422, "INVALID_TRACK", list(result.details))
    if result.status == INGEST_STALE:
        raise _error(409, "STALE_UPDATE", list(result.details))
    return result.to_dict()


@app.post("/ingest/tracks/batch")
def post_tracks_batch(payload: Dict[str, Any]) -> Dict[str, Any]:
    _validate_request(payload)
    raw_tracks = payload.get("tracks")
    if not isinstance(raw_tracks, list):
        raise _error(422, "INVALID_REQUEST", ["tracks must be a list"])
    results = [ENGINE.ingest_payload(item).to_dict() for item in raw_tracks]
    accepted = sum(1 for item in results if item["status"] == "accepted")
    return {
        "accepted": accepted,
        "rejected": len(results) - accepted,
        "results": results,
        "schema_version": SCHEMA_VERSION,
    }


@app.post("/ingest/intents")
def post_intent(payload: Dict[str, Any]) -> Dict[str, Any]:
    _validate_request(payload)
    try:
        intent = ENGINE.ingest_intent(parse_intent(payload))
    except ValidationError as err:
        raise _error(422, "INVALID_INTENT", err.details)
    return {"status": "accepted", "aircraft_id": intent.aircraft_id, "schema_version": SCHEMA_VERSION}


@app.delete("/ingest/intents/{aircraft_id}")
def delete_intent(aircraft_id: str) -> Dict[str, Any]:
    if not ENGINE.clear_intent(aircraft_id):
        raise _error(404, "INTENT_NOT_FOUND", [f"no intent stored for {aircraft_id}"])
    return {"status": "cleared", "aircraft_id": aircraft_id, "schema_version": SCHEMA_VERSION}


@app.put("/sectors")
def put_sectors(payload: Dict[str, Any]) -> Dict[str, Any]:
    _validate_request(payload)
    raw_sectors = payload.get("sectors")
    if not isinstance(raw_sectors, list):
        raise _error(422, "INVALID_REQUEST", ["sectors must be a list"])
    try:
        sectors = ENGINE.set_sectors([parse_sector(item) for item in raw_sectors])
    except ValidationError as err:
        raise _error(422, "INVALID_SECTOR", err.details)
    return {
        "sector_count": len(sectors),
        "sectors": [sector.to_dict() for sector in sectors],
        "schema_version": SCHEMA_VERSION,
    }


@app.get("/sectors/assignments")
def get_sector_assignments(changes_only: bool = False) -> Dict[str, Any]:
    current = ENGINE.snapshot()
    assignments = current.sector_assignments if current is not None else ()
    if changes_only:
        assignments = tuple(item for item in assignments if item.is_sector_change)
    return {
        "generation": current.generation if current is not None else 0,
        "assignments": [item.to_dict() for item in assignments],
        "schema_version": SCHEMA_VERSION,
    }


@app.post("/cycles/run")
def post_run_cycle() -> Dict[str, Any]:
    try:
        snapshot = ENGINE.run_cycle()
    except ComputationTimeout as err:
        raise _error(503, "COMPUTATION_TIMEOUT", [str(err)])
    return {
        "generation": snapshot.generation,
        "stats": snapshot.stats.to_dict(),
        "schema_version": SCHEMA_VERSION,
    }


@app.get("/conflicts/{conflict_id}/resolution")
def get_conflict_resolution(conflict_id: str) -> Dict[str, Any]:
    conflict = ENGINE.find_conflict(conflict_id)
    if conflict is None:
        raise _error(404, "CONFLICT_NOT_FOUND", [f"no active conflict {conflict_id}"])
    try:
        suggestion = select_resolution(conflict)
    except ResolutionInfeasible as err:
        raise _error(409, "RESOLUTION_INFEASIBLE", [str(err)])
    return {
        "conflict_id": conflict.conflict_id,
        "suggestion": suggestion.to_dict(),
        "suggestions": [item.to_dict() for item in conflict.resolutions],
        "model_version": conflict.model_version,
        "schema_version": SCHEMA_VERSION,
    }


@app.post("/alerts/{alert_id}/ack")
def post_alert_ack(alert_id: str) -> Dict[str, Any]:
    alert = ENGINE.acknowledge_alert(alert_id)
    if alert is None:
        raise _error(404, "ALERT_NOT_FOUND", [f"no open alert {alert_id}"])
    return {"alert": alert.to_dict(), "schema_version": SCHEMA_VERSION}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=os.environ.get("ATCG_HOST", "127.0.0.1"), port=int(os.environ.get("ATCG_PORT", "8000")))
