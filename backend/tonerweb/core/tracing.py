"""
OpenTelemetry tracing.

Spans are created for each HTTP request (FastAPI instrumentation), each
orchestration run and each upstream provider call. Export goes over OTLP/gRPC
when an endpoint is configured; otherwise spans are created but not exported,
which still gives every log line a trace id.

Configuration:
- OTEL_SERVICE_NAME: service name (default: tonerweb_assistant)
- OTEL_EXPORTER_OTLP_ENDPOINT: OTLP endpoint, e.g. http://localhost:4317
- OTEL_TRACES_SAMPLER_ARG: sampling rate (default: 1.0)
"""
from typing import Any, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.trace import Status, StatusCode, Tracer

from tonerweb.core.logging import get_logger

logger = get_logger(__name__)

_tracer: Optional[Tracer] = None
_tracer_provider: Optional[TracerProvider] = None


def configure_tracing(
    service_name: str = "tonerweb_assistant",
    otlp_endpoint: Optional[str] = None,
    sampling_rate: float = 1.0,
) -> None:
    """
    Install a tracer provider.

    Args:
        service_name: ``service.name`` resource attribute
        otlp_endpoint: OTLP/gRPC collector endpoint; no export when None
        sampling_rate: Fraction of traces kept (0.0 to 1.0)
    """
    global _tracer, _tracer_provider

    resource = Resource.create({
        "service.name": service_name,
        "service.version": "1.0.0",
    })

    if sampling_rate < 1.0:
        _tracer_provider = TracerProvider(resource=resource, sampler=TraceIdRatioBased(sampling_rate))
    else:
        _tracer_provider = TracerProvider(resource=resource)

    if otlp_endpoint:
        try:
            exporter = OTLPSpanExporter(endpoint=otlp_endpoint)
            _tracer_provider.add_span_processor(BatchSpanProcessor(exporter))
            logger.info("tracing_otlp_configured", endpoint=otlp_endpoint, sampling_rate=sampling_rate)
        except Exception as e:
            logger.warning(
                "tracing_otlp_configuration_failed",
                endpoint=otlp_endpoint,
                error=str(e),
                error_type=type(e).__name__,
                message="Tracing will continue without OTLP export",
            )

    trace.set_tracer_provider(_tracer_provider)
    _tracer = trace.get_tracer("tonerweb")

    logger.info(
        "tracing_configured",
        service_name=service_name,
        sampling_rate=sampling_rate,
        otlp_enabled=bool(otlp_endpoint),
    )


def get_tracer() -> Tracer:
    """
    Tracer for manual spans.

    Falls back to the globally registered provider (a no-op one in tests)
    when ``configure_tracing`` has not run.
    """
    if _tracer is None:
        return trace.get_tracer("tonerweb")
    return _tracer


def get_trace_id_from_context() -> Optional[str]:
    """Trace id of the active span as 32 hex chars, or None."""
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        return format(span_context.trace_id, "032x")
    return None


def set_span_attribute(key: str, value: Any) -> None:
    span = trace.get_current_span()
    if span.is_recording():
        span.set_attribute(key, value)


def set_span_status(status_code: StatusCode, description: Optional[str] = None) -> None:
    span = trace.get_current_span()
    if span.is_recording():
        span.set_status(Status(status_code, description))


def record_exception(exception: BaseException) -> None:
    span = trace.get_current_span()
    if span.is_recording():
        try:
            span.record_exception(exception)
        except Exception as e:
            logger.debug("span_record_exception_failed", error_type=type(e).__name__)
        span.set_status(Status(StatusCode.ERROR, type(exception).__name__))


def instrument_fastapi(app) -> None:
    """Create a server span for every HTTP request handled by ``app``."""
    try:
        FastAPIInstrumentor.instrument_app(app)
        logger.info("tracing_fastapi_instrumented")
    except Exception as e:
        logger.warning(
            "tracing_fastapi_instrumentation_failed",
            error=str(e),
            error_type=type(e).__name__,
        )


def shutdown_tracing() -> None:
    """Flush pending spans."""
    if _tracer_provider:
        try:
            _tracer_provider.shutdown()
            logger.info("tracing_shutdown")
        except Exception as e:
            logger.warning(
                "tracing_shutdown_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
