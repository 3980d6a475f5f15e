"""
OpenTelemetry distributed tracing configuration.

Spans wrap each orchestrated request and each upstream provider call. Traces
are exported over OTLP when an endpoint is configured; otherwise spans are
still created (so trace ids reach the logs) but not exported.

Configuration:
- OTEL_SERVICE_NAME: Service name (default: aicore_orchestrator)
- OTEL_EXPORTER_OTLP_ENDPOINT: OTLP gRPC endpoint, e.g. http://localhost:4317
- OTEL_TRACES_SAMPLER_ARG: Sampling rate (default: 1.0 for 100% sampling)
"""
import os
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.trace import Span, Status, StatusCode, Tracer

from aicore.core.logging import get_logger, set_trace_id

logger = get_logger(__name__)

_tracer: Optional[Tracer] = None
_tracer_provider: Optional[TracerProvider] = None


def configure_tracing(
    service_name: Optional[str] = None,
    otlp_endpoint: Optional[str] = None,
    sampling_rate: Optional[float] = None,
) -> None:
    """
    Configure OpenTelemetry tracing.

    Args:
        service_name: Service name identifier (defaults to OTEL_SERVICE_NAME)
        otlp_endpoint: OTLP endpoint URL (defaults to OTEL_EXPORTER_OTLP_ENDPOINT)
        sampling_rate: Sampling rate in [0.0, 1.0] (defaults to OTEL_TRACES_SAMPLER_ARG or 1.0)
    """
    global _tracer, _tracer_provider

    service_name = service_name or os.getenv("OTEL_SERVICE_NAME", "aicore_orchestrator")
    otlp_endpoint = otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if sampling_rate is None:
        sampling_rate = float(os.getenv("OTEL_TRACES_SAMPLER_ARG", "1.0"))

    resource = Resource.create({
        "service.name": service_name,
        "service.version": "0.1.0",
    })

    if sampling_rate < 1.0:
        _tracer_provider = TracerProvider(resource=resource, sampler=TraceIdRatioBased(sampling_rate))
    else:
        _tracer_provider = TracerProvider(resource=resource)

    if otlp_endpoint:
        try:
            _tracer_provider.add_span_processor(
                BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint))
            )
            logger.info(
                "tracing_otlp_configured",
                endpoint=otlp_endpoint,
                sampling_rate=sampling_rate,
            )
        except Exception as e:
            logger.warning(
                "tracing_otlp_configuration_failed",
                endpoint=otlp_endpoint,
                error=str(e),
                error_type=type(e).__name__,
            )

    trace.set_tracer_provider(_tracer_provider)
    _tracer = trace.get_tracer("aicore")

    logger.info(
        "tracing_configured",
        service_name=service_name,
        sampling_rate=sampling_rate,
        otlp_enabled=bool(otlp_endpoint),
    )


def get_tracer() -> Tracer:
    """
    Get the tracer instance.

    Falls back to the globally registered provider (a no-op tracer when
    ``configure_tracing`` was never called) so library use never requires setup.
    """
    global _tracer
    if _tracer is None:
        _tracer = trace.get_tracer("aicore")
    return _tracer


@contextmanager
def start_span(name: str, **attributes: Any) -> Iterator[Span]:
    """
    Start a span as the current span, recording any exception raised inside it.

    None-valued attributes are skipped; OpenTelemetry rejects them.
    """
    with get_tracer().start_as_current_span(name, record_exception=False, set_status_on_exception=False) as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(key, value)
        trace_id = get_trace_id_from_context()
        if trace_id:
            set_trace_id(trace_id)
        try:
            yield span
        except Exception as exc:
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            raise


def get_trace_id_from_context() -> Optional[str]:
    """Trace ID of the active span as a hex string, or None when no span is recording."""
    current_span = trace.get_current_span()
    if current_span:
        span_context = current_span.get_span_context()
        if span_context.is_valid:
            return format(span_context.trace_id, "032x")
    return None


def set_span_attribute(key: str, value: Any) -> None:
    if value is None:
        return
    current_span = trace.get_current_span()
    if current_span:
        current_span.set_attribute(key, value)


def record_exception(exception: Exception) -> None:
    current_span = trace.get_current_span()
    if current_span:
        current_span.record_exception(exception)
        current_span.set_status(Status(StatusCode.ERROR, str(exception)))


def shutdown_tracing() -> None:
    """Flush and shut down the tracer provider configured by ``configure_tracing``."""
    global _tracer, _tracer_provider
    if _tracer_provider is not None:
        try:
            _tracer_provider.shutdown()
        except Exception as e:
            logger.warning(
                "tracing_shutdown_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
    _tracer_provider = None
    _tracer = None
