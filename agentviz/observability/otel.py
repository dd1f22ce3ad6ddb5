"""OpenTelemetry + Prometheus fallback wiring for the monitor daemon."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from agentviz import config

logger = logging.getLogger("agentviz.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None

_ingestion_counter: Any | None = None
_ingestion_latency_hist: Any | None = None
_parser_failure_counter: Any | None = None
_correlation_counter: Any | None = None
_tool_calls_counter: Any | None = None

_prom_enabled = False
_prom_ingestion_counter: Any | None = None
_prom_ingestion_latency_hist: Any | None = None
_prom_parser_failure_counter: Any | None = None
_prom_correlation_counter: Any | None = None
_prom_tool_calls_counter: Any | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/"):
        endpoint = endpoint[:-1]
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def _prom_labels(**values: str) -> dict[str, str]:
    return {key: (value or "").strip() or "unknown" for key, value in values.items()}


def initialize() -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider
    global _ingestion_counter, _ingestion_latency_hist, _parser_failure_counter
    global _correlation_counter, _tool_calls_counter
    global _prom_enabled
    global _prom_ingestion_counter, _prom_ingestion_latency_hist, _prom_parser_failure_counter
    global _prom_correlation_counter, _prom_tool_calls_counter

    if _initialized:
        return
    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (AGENTVIZ_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "agentviz-monitor"

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "agentviz",
        }
    )

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer("agentviz.monitor")

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=metrics_endpoint or None)
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("agentviz.monitor")

    _ingestion_counter = meter.create_counter(
        "agentviz_ingested_events_total",
        unit="1",
        description="Events read from assistant logs, by outcome",
    )
    _ingestion_latency_hist = meter.create_histogram(
        "agentviz_ingestion_latency_ms",
        unit="ms",
        description="Latency of one tail-transform-store pass",
    )
    _parser_failure_counter = meter.create_counter(
        "agentviz_parser_failures_total",
        unit="1",
        description="Lines or files skipped as malformed",
    )
    _correlation_counter = meter.create_counter(
        "agentviz_correlation_attempts_total",
        unit="1",
        description="Correlation attempts by result",
    )
    _tool_calls_counter = meter.create_counter(
        "agentviz_tool_calls_total",
        unit="1",
        description="Tool executions observed, by tool and status",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = tracer
    _enabled = True

    if config.PROM_PORT > 0:
        try:
            from prometheus_client import Counter, Histogram, start_http_server

            start_http_server(config.PROM_PORT)
            _prom_enabled = True
            _prom_ingestion_counter = Counter(
                "agentviz_ingested_events_total",
                "Events read from assistant logs, by outcome",
                ["result"],
            )
            _prom_ingestion_latency_hist = Histogram(
                "agentviz_ingestion_latency_ms",
                "Latency of one tail-transform-store pass",
                ["mode"],
            )
            _prom_parser_failure_counter = Counter(
                "agentviz_parser_failures_total",
                "Lines or files skipped as malformed",
                ["parser"],
            )
            _prom_correlation_counter = Counter(
                "agentviz_correlation_attempts_total",
                "Correlation attempts by result",
                ["result"],
            )
            _prom_tool_calls_counter = Counter(
                "agentviz_tool_calls_total",
                "Tool executions observed, by tool and status",
                ["tool", "status"],
            )
            logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Prometheus fallback not started: %s", exc)
            _prom_enabled = False

    logger.info(
        "OpenTelemetry initialized (service=%s endpoint=%s)",
        service_name,
        config.OTEL_ENDPOINT,
    )


def shutdown() -> None:
    global _enabled
    if not _initialized:
        return
    for provider in (_meter_provider, _trace_provider):
        if provider is None:
            continue
        try:
            provider.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Telemetry provider shutdown failed: %s", exc)
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        yield span


def record_ingestion(inserted: int, duplicates: int, duration_ms: float, *, mode: str = "live") -> None:
    if _enabled and _ingestion_counter is not None:
        if inserted:
            _ingestion_counter.add(inserted, {"result": "inserted"})
        if duplicates:
            _ingestion_counter.add(duplicates, {"result": "duplicate"})
    if _enabled and _ingestion_latency_hist is not None:
        _ingestion_latency_hist.record(max(0.0, float(duration_ms)), {"mode": mode})
    if _prom_enabled and _prom_ingestion_counter is not None:
        if inserted:
            _prom_ingestion_counter.labels(result="inserted").inc(inserted)
        if duplicates:
            _prom_ingestion_counter.labels(result="duplicate").inc(duplicates)
    if _prom_enabled and _prom_ingestion_latency_hist is not None:
        _prom_ingestion_latency_hist.labels(**_prom_labels(mode=mode)).observe(max(0.0, float(duration_ms)))


def record_parser_failure(parser: str) -> None:
    labels = {"parser": parser or "unknown"}
    if _enabled and _parser_failure_counter is not None:
        _parser_failure_counter.add(1, labels)
    if _prom_enabled and _prom_parser_failure_counter is not None:
        _prom_parser_failure_counter.labels(**_prom_labels(**labels)).inc()


def record_correlation(result: str) -> None:
    labels = {"result": result or "unknown"}
    if _enabled and _correlation_counter is not None:
        _correlation_counter.add(1, labels)
    if _prom_enabled and _prom_correlation_counter is not None:
        _prom_correlation_counter.labels(**_prom_labels(**labels)).inc()


def record_tool_result(tool: str, status: str, count: int = 1) -> None:
    safe_count = max(0, int(count))
    if safe_count == 0:
        return
    labels = {"tool": tool or "unknown", "status": status or "unknown"}
    if _enabled and _tool_calls_counter is not None:
        _tool_calls_counter.add(safe_count, labels)
    if _prom_enabled and _prom_tool_calls_counter is not None:
        _prom_tool_calls_counter.labels(**_prom_labels(**labels)).inc(safe_count)
