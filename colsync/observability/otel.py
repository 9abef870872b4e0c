"""Optional tracing and metrics for colsync.

OpenTelemetry exports spans and counters over OTLP when COLSYNC_OTEL_ENABLED
is set; a Prometheus endpoint mirrors the same counters when
COLSYNC_PROM_PORT is positive. With neither, every helper is a no-op.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from colsync import config

logger = logging.getLogger("colsync.observability")

# name -> (kind, description, label names)
_INSTRUMENTS: dict[str, tuple[str, str, tuple[str, ...]]] = {
    "colsync_collection_operations_total": (
        "counter", "Collection load/save/watch operations", ("operation", "result"),
    ),
    "colsync_collection_operation_latency_ms": (
        "histogram", "Latency of collection load/save operations", ("operation", "result"),
    ),
    "colsync_parser_failures_total": (
        "counter", "Collection files skipped because they could not be parsed", ("role",),
    ),
    "colsync_watch_events_total": (
        "counter", "File change events delivered by watch sessions", ("event_type",),
    ),
}


class _Telemetry:
    def __init__(self) -> None:
        self.initialized = False
        self.tracer: Any | None = None
        self.providers: list[Any] = []
        self.instrumentor: Any | None = None
        self.otel: dict[str, Any] = {}
        self.prom: dict[str, Any] = {}

    def emit(self, name: str, value: float, labels: dict[str, str]) -> None:
        labels = {key: (val or "").strip() or "unknown" for key, val in labels.items()}
        instrument = self.otel.get(name)
        if instrument is not None:
            if hasattr(instrument, "add"):
                instrument.add(value, labels)
            else:
                instrument.record(value, labels)
        metric = self.prom.get(name)
        if metric is not None:
            child = metric.labels(**labels)
            if hasattr(child, "inc"):
                child.inc(value)
            else:
                child.observe(value)


_telemetry = _Telemetry()


def _otlp_endpoint(signal_path: str) -> str | None:
    base = (config.OTEL_ENDPOINT or "").strip().rstrip("/")
    if not base:
        return None
    if base.endswith(signal_path):
        return base
    if base.endswith("/v1"):
        base = base[: -len("/v1")]
    return f"{base}{signal_path}"


def _start_otel(app: FastAPI | None) -> None:
    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    resource = Resource.create({"service.name": config.OTEL_SERVICE_NAME or "colsync"})

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=_otlp_endpoint("/v1/traces"))))
    trace.set_tracer_provider(trace_provider)

    reader = PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=_otlp_endpoint("/v1/metrics")))
    meter_provider = MeterProvider(resource=resource, metric_readers=[reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("colsync")

    for name, (kind, description, _labels) in _INSTRUMENTS.items():
        if kind == "counter":
            _telemetry.otel[name] = meter.create_counter(name, unit="1", description=description)
        else:
            _telemetry.otel[name] = meter.create_histogram(name, unit="ms", description=description)

    _telemetry.tracer = trace.get_tracer("colsync")
    _telemetry.providers = [meter_provider, trace_provider]
    _telemetry.instrumentor = FastAPIInstrumentor()
    if app:
        _telemetry.instrumentor.instrument_app(app)
    logger.info("OpenTelemetry initialized (endpoint=%s)", config.OTEL_ENDPOINT)


def _start_prometheus() -> None:
    try:
        from prometheus_client import Counter, Histogram, start_http_server

        start_http_server(config.PROM_PORT)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Prometheus metrics not started: %s", exc)
        return

    for name, (kind, description, labels) in _INSTRUMENTS.items():
        metric_cls = Counter if kind == "counter" else Histogram
        _telemetry.prom[name] = metric_cls(name, description, list(labels))
    logger.info("Prometheus metrics listening on port %s", config.PROM_PORT)


def initialize(app: FastAPI | None = None) -> None:
    if _telemetry.initialized:
        if app and _telemetry.instrumentor:
            _telemetry.instrumentor.instrument_app(app)
        return
    _telemetry.initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (COLSYNC_OTEL_ENABLED=false)")
        return
    _start_otel(app)
    if config.PROM_PORT > 0:
        _start_prometheus()


def shutdown(app: FastAPI | None = None) -> None:
    if app and _telemetry.instrumentor:
        try:
            _telemetry.instrumentor.uninstrument_app(app)
        except Exception as exc:  # noqa: BLE001
            logger.debug("FastAPI uninstrument failed: %s", exc)
    for provider in _telemetry.providers:
        try:
            provider.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Telemetry provider shutdown failed: %s", exc)
    _telemetry.providers = []
    _telemetry.otel.clear()
    _telemetry.tracer = None


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if _telemetry.tracer is None:
        yield None
        return
    with _telemetry.tracer.start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        yield span


def record_collection_operation(operation: str, result: str, duration_ms: float = 0.0) -> None:
    labels = {"operation": operation, "result": result}
    _telemetry.emit("colsync_collection_operations_total", 1, labels)
    if duration_ms > 0:
        _telemetry.emit("colsync_collection_operation_latency_ms", float(duration_ms), labels)


def record_parser_failure(role: str, count: int = 1) -> None:
    count = max(0, int(count))
    if count:
        _telemetry.emit("colsync_parser_failures_total", count, {"role": role})


def record_watch_event(event_type: str) -> None:
    _telemetry.emit("colsync_watch_events_total", 1, {"event_type": event_type})
