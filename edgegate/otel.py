from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

from .config import Settings

logger = logging.getLogger(__name__)

_OTEL_READY = False
_OTEL_SETUP_ATTEMPTED = False
_TRACER: Any = None
_HTTP_COUNTER: Any = None
_HTTP_LATENCY_MS: Any = None
_GATE_OUTCOMES: Any = None
_SESSION_LATENCY_MS: Any = None


def otel_ready() -> bool:
    return _OTEL_READY


def setup_otel(app: Any, settings: Settings) -> bool:
    """Configure FastAPI tracing and gate metrics when OTEL is enabled.

    Near-zero overhead when disabled, and the otel packages are an optional
    extra: a missing install disables telemetry with a warning.
    """

    global _OTEL_READY, _OTEL_SETUP_ATTEMPTED, _TRACER
    global _HTTP_COUNTER, _HTTP_LATENCY_MS, _GATE_OUTCOMES, _SESSION_LATENCY_MS
    if _OTEL_SETUP_ATTEMPTED:
        return _OTEL_READY
    _OTEL_SETUP_ATTEMPTED = True

    if not settings.otel_enabled:
        return False

    try:
        from opentelemetry import metrics as otel_metrics  # type: ignore[import-not-found]
        from opentelemetry import trace
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor  # type: ignore[import-not-found]
        from opentelemetry.sdk.metrics import MeterProvider  # type: ignore[import-not-found]
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader  # type: ignore[import-not-found]
        from opentelemetry.sdk.resources import Resource  # type: ignore[import-not-found]
        from opentelemetry.sdk.trace import TracerProvider  # type: ignore[import-not-found]
        from opentelemetry.sdk.trace.export import BatchSpanProcessor  # type: ignore[import-not-found]
    except Exception as e:  # pragma: no cover
        logger.warning("OTEL enabled but dependencies missing; telemetry disabled. error=%s", e)
        return False

    resource = Resource.create({"service.name": settings.otel_service_name})
    provider = TracerProvider(resource=resource)

    endpoint = settings.otel_exporter_otlp_endpoint
    if endpoint:
        try:
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import (  # type: ignore[import-not-found]
                OTLPSpanExporter,
            )

            provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
        except Exception as e:  # pragma: no cover
            logger.warning("OTEL OTLP trace exporter init failed; spans will stay local. error=%s", e)
    else:
        logger.info("OTEL tracing enabled without exporter; spans will stay local to process")

    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app, tracer_provider=provider)
    _TRACER = trace.get_tracer("edgegate")

    # Metrics are best-effort; tracing should still work if metric setup fails.
    try:
        metric_readers: list[Any] = []
        if endpoint:
            from opentelemetry.exporter.otlp.proto.http.metric_exporter import (  # type: ignore[import-not-found]
                OTLPMetricExporter,
            )

            metric_readers.append(PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=endpoint)))
        meter_provider = MeterProvider(resource=resource, metric_readers=metric_readers)
        otel_metrics.set_meter_provider(meter_provider)
        meter = otel_metrics.get_meter("edgegate")
        _HTTP_COUNTER = meter.create_counter(
            name="edgegate.http.server.requests",
            unit="1",
            description="HTTP requests seen by the edge gate",
        )
        _HTTP_LATENCY_MS = meter.create_histogram(
            name="edgegate.http.server.duration_ms",
            unit="ms",
            description="HTTP request latency in milliseconds",
        )
        _GATE_OUTCOMES = meter.create_counter(
            name="edgegate.gate.outcomes",
            unit="1",
            description="Gate decisions by outcome (passed, rate_limited, prelaunch_redirect, ...)",
        )
        _SESSION_LATENCY_MS = meter.create_histogram(
            name="edgegate.session.refresh.duration_ms",
            unit="ms",
            description="Auth collaborator round-trip latency in milliseconds",
        )
    except Exception as e:  # pragma: no cover
        logger.warning("OTEL metric setup failed; continuing with tracing only. error=%s", e)

    _OTEL_READY = True
    return True


@contextmanager
def span(name: str, attributes: dict[str, Any] | None = None) -> Iterator[Any]:
    """Start a tracing span when OTEL is active; otherwise no-op."""

    if not _OTEL_READY or _TRACER is None:
        yield None
        return

    with _TRACER.start_as_current_span(name) as s:
        for k, v in _attrs(attributes).items():
            s.set_attribute(k, v)
        yield s


def _attrs(attrs: dict[str, Any] | None) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if not attrs:
        return out
    for k, v in attrs.items():
        if v is None:
            continue
        out[str(k)] = v if isinstance(v, (str, bool, int, float)) else str(v)
    return out


def record_http_request_metric(*, method: str, path: str, status_code: int, latency_ms: float) -> None:
    if not _OTEL_READY:
        return
    attrs = _attrs({"http.method": method, "http.route": path, "http.status_code": int(status_code)})
    if _HTTP_COUNTER is not None:
        _HTTP_COUNTER.add(1, attributes=attrs)
    if _HTTP_LATENCY_MS is not None:
        _HTTP_LATENCY_MS.record(float(latency_ms), attributes=attrs)


def record_gate_outcome(*, outcome: str, path_group: str) -> None:
    if not _OTEL_READY or _GATE_OUTCOMES is None:
        return
    _GATE_OUTCOMES.add(1, attributes=_attrs({"gate.outcome": outcome, "gate.path_group": path_group}))


def record_session_refresh_metric(*, latency_ms: float, outcome: str) -> None:
    if not _OTEL_READY or _SESSION_LATENCY_MS is None:
        return
    _SESSION_LATENCY_MS.record(float(latency_ms), attributes=_attrs({"session.outcome": outcome}))
