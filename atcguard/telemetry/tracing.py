#!/usr/bin/env python3
"""OpenTelemetry tracing bootstrap for engine cycles and API calls."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional
from urllib.parse import unquote

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

from atcguard.contracts.versioning import ENGINE_MODEL_VERSION


LOGGER = logging.getLogger(__name__)

DEFAULT_SERVICE_NAME = "atcguard-engine"
TRACES_PATH = "/v1/traces"

_PROVIDER: Optional[TracerProvider] = None


@dataclass(frozen=True)
class TracingSettings:
    enabled: bool = False
    endpoint: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    service_name: str = DEFAULT_SERVICE_NAME
    sample_ratio: float = 1.0


def _header_map(raw: str) -> Dict[str, str]:
    """W3C baggage-style ``k=v,k2=v2`` with percent-encoded values."""

    headers: Dict[str, str] = {}
    for item in raw.split(","):
        key, sep, value = item.partition("=")
        key, value = key.strip(), unquote(value.strip())
        if sep and key and value:
            headers[key] = value
    return headers


def _traces_endpoint(env: Mapping[str, str]) -> str:
    # The signal-specific variable is used verbatim; the generic base gets the traces path.
    specific = str(env.get("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT", "")).strip()
    if specific:
        return specific
    base = str(env.get("OTEL_EXPORTER_OTLP_ENDPOINT", "")).strip().rstrip("/")
    if not base:
        return ""
    return base if base.endswith(TRACES_PATH) else base + TRACES_PATH


def _sample_ratio(raw: str) -> float:
    if not raw.strip():
        return 1.0
    try:
        ratio = float(raw)
    except ValueError:
        LOGGER.warning("Ignoring ATCG_TRACING_SAMPLE_RATIO=%r", raw)
        return 1.0
    return min(1.0, max(0.0, ratio))


def tracing_settings(environ: Optional[Mapping[str, str]] = None) -> TracingSettings:
    env = os.environ if environ is None else environ
    enabled = str(env.get("ATCG_TRACING_ENABLED", "false")).strip().lower() in {"1", "true", "yes", "on"}
    raw_headers = str(env.get("ATCG_TRACING_HEADERS", "") or env.get("OTEL_EXPORTER_OTLP_HEADERS", ""))
    return TracingSettings(
        enabled=enabled,
        endpoint=_traces_endpoint(env),
        headers=_header_map(raw_headers),
        service_name=str(env.get("OTEL_SERVICE_NAME", "")).strip() or DEFAULT_SERVICE_NAME,
        sample_ratio=_sample_ratio(str(env.get("ATCG_TRACING_SAMPLE_RATIO", ""))),
    )


def init_tracing_if_enabled(environ: Optional[Mapping[str, str]] = None) -> bool:
    """Install a global OTLP tracer provider when ATCG_TRACING_ENABLED is set."""

    global _PROVIDER
    if _PROVIDER is not None:
        return True

    settings = tracing_settings(environ)
    if not settings.enabled:
        LOGGER.info("Tracing disabled")
        return False
    if not settings.endpoint:
        LOGGER.warning("Tracing enabled but no OTLP endpoint configured")
        return False

    try:
        resource = Resource.create({"service.name": settings.service_name, "service.version": ENGINE_MODEL_VERSION})
        provider = TracerProvider(resource=resource, sampler=ParentBased(TraceIdRatioBased(settings.sample_ratio)))
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.endpoint, headers=settings.headers)))
        trace.set_tracer_provider(provider)
    except (ValueError, TypeError, OSError) as err:
        LOGGER.exception("Failed to initialize tracing: %s", err)
        return False

    _PROVIDER = provider
    LOGGER.info(
        "Tracing initialized service=%s endpoint=%s sample_ratio=%.2f",
        settings.service_name,
        settings.endpoint,
        settings.sample_ratio,
    )
    return True


def shutdown_tracing() -> None:
    """Flush pending spans; a no-op when tracing was never initialized."""

    global _PROVIDER
    provider, _PROVIDER = _PROVIDER, None
    if provider is not None:
        provider.shutdown()


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name, ENGINE_MODEL_VERSION)


def format_trace_ids(span: object) -> Dict[str, Optional[str]]:
    span_context = getattr(span, "get_span_context", lambda: None)()
    trace_id = int(getattr(span_context, "trace_id", 0) or 0)
    span_id = int(getattr(span_context, "span_id", 0) or 0)
    if trace_id == 0 or span_id == 0:
        return {"trace_id": None, "span_id": None}
    return {
        "trace_id": f"{trace_id:032x}",
        "span_id": f"{span_id:016x}",
    }
