"""OpenTelemetry wiring with an optional Prometheus scrape endpoint.

Everything here is a no-op until `initialize()` runs with
RECORDER_OTEL_ENABLED set and the `otel` extra installed.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

from recorder import config

logger = logging.getLogger("recorder.observability")


@dataclass(frozen=True)
class _MetricSpec:
    name: str
    kind: str  # "counter" or "histogram"
    description: str
    labels: tuple[str, ...]
    unit: str = "1"


_SPECS = {
    "ingestion": _MetricSpec(
        "recorder_ingestion_batches_total",
        "counter",
        "Incremental transcript ingestion passes",
        ("entity", "result"),
    ),
    "ingestion_latency": _MetricSpec(
        "recorder_ingestion_latency_ms",
        "histogram",
        "Latency of incremental transcript ingestion passes",
        ("entity", "result"),
        unit="ms",
    ),
    "parser_failures": _MetricSpec(
        "recorder_parser_failures_total",
        "counter",
        "Transcript lines skipped because they could not be parsed",
        ("parser",),
    ),
    "tool_calls": _MetricSpec(
        "recorder_tool_calls_total",
        "counter",
        "Tool calls stored while ingesting transcripts",
        ("tool",),
    ),
}


class _State:
    def __init__(self) -> None:
        self.initialized = False
        self.tracer: Any = None
        self.trace_provider: Any = None
        self.meter_provider: Any = None
        self.instrumentor: Any = None
        self.otel_metrics: dict[str, Any] = {}
        self.prom_metrics: dict[str, Any] = {}


_state = _State()


def _otlp_url(signal_path: str) -> str | None:
    base = (config.OTEL_ENDPOINT or "").strip().rstrip("/")
    if not base:
        return None
    if base.endswith(signal_path):
        return base
    if base.endswith("/v1"):
        base = base[: -len("/v1")]
    return base + signal_path


def _clean(value: str) -> str:
    return (value or "").strip() or "unknown"


def _start_prometheus() -> None:
    try:
        from prometheus_client import Counter, Histogram, start_http_server
    except ImportError as exc:
        logger.warning(f"Prometheus endpoint requested but prometheus_client is missing: {exc}")
        return
    try:
        start_http_server(config.PROM_PORT)
    except OSError as exc:
        logger.warning(f"Prometheus endpoint not started on port {config.PROM_PORT}: {exc}")
        return
    for key, spec in _SPECS.items():
        factory = Counter if spec.kind == "counter" else Histogram
        _state.prom_metrics[key] = factory(spec.name, spec.description, list(spec.labels))
    logger.info(f"Prometheus metrics on port {config.PROM_PORT}")


def initialize(app: Any | None = None) -> None:
    """Set up tracing and metrics once; later calls only instrument `app`."""
    if _state.initialized:
        if app is not None and _state.instrumentor is not None:
            _state.instrumentor.instrument_app(app)
        return
    _state.initialized = True

    if not config.OTEL_ENABLED:
        logger.debug("OpenTelemetry disabled")
        return

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
        logger.warning(f"OpenTelemetry requested but not installed: {exc}")
        return

    resource = Resource.create(
        {"service.name": config.OTEL_SERVICE_NAME or "session-recorder", "service.namespace": "recorder"}
    )

    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=_otlp_url("/v1/traces"))))
    trace.set_tracer_provider(tracer_provider)

    reader = PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=_otlp_url("/v1/metrics")))
    meter_provider = MeterProvider(resource=resource, metric_readers=[reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("recorder")

    for key, spec in _SPECS.items():
        create = meter.create_counter if spec.kind == "counter" else meter.create_histogram
        _state.otel_metrics[key] = create(spec.name, unit=spec.unit, description=spec.description)

    _state.trace_provider = tracer_provider
    _state.meter_provider = meter_provider
    _state.tracer = trace.get_tracer("recorder")
    _state.instrumentor = FastAPIInstrumentor()
    if app is not None:
        _state.instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        _start_prometheus()

    logger.info(f"OpenTelemetry exporting to {config.OTEL_ENDPOINT}")


def shutdown(app: Any | None = None) -> None:
    if not _state.initialized:
        return
    steps = []
    if app is not None and _state.instrumentor is not None:
        steps.append(("uninstrument", lambda: _state.instrumentor.uninstrument_app(app)))
    if _state.meter_provider is not None:
        steps.append(("meter provider", _state.meter_provider.shutdown))
    if _state.trace_provider is not None:
        steps.append(("trace provider", _state.trace_provider.shutdown))
    for label, step in steps:
        try:
            step()
        except Exception:
            logger.debug(f"Observability shutdown step failed: {label}", exc_info=True)
    _state.tracer = None
    _state.otel_metrics = {}


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None) -> Iterator[Any]:
    if _state.tracer is None:
        yield None
        return
    with _state.tracer.start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        yield span


def _emit(key: str, amount: float, labels: dict[str, str]) -> None:
    spec = _SPECS[key]
    otel_metric = _state.otel_metrics.get(key)
    if otel_metric is not None:
        if spec.kind == "counter":
            otel_metric.add(amount, labels)
        else:
            otel_metric.record(amount, labels)
    prom_metric = _state.prom_metrics.get(key)
    if prom_metric is not None:
        bound = prom_metric.labels(**labels)
        if spec.kind == "counter":
            bound.inc(amount)
        else:
            bound.observe(amount)


def record_ingestion(entity: str, result: str, duration_ms: float) -> None:
    labels = {"entity": _clean(entity), "result": _clean(result)}
    _emit("ingestion", 1, labels)
    _emit("ingestion_latency", max(0.0, float(duration_ms)), labels)


def record_parser_failure(parser: str, *, count: int = 1) -> None:
    if count > 0:
        _emit("parser_failures", int(count), {"parser": _clean(parser)})


def record_tool_calls(tool: str, *, count: int = 1) -> None:
    if count > 0:
        _emit("tool_calls", int(count), {"tool": _clean(tool)})
