"""
Tracer initialization and configuration for OpenTelemetry.

Tracing is opt-in: until initialize_tracing() runs, get_tracer() hands out
a tracer from whatever provider is globally installed (the API default is a
no-op), so library code can create spans unconditionally.
"""

import logging
import os

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_NAME = "report-sync"

_provider: TracerProvider | None = None


def initialize_tracing(
    service_name: str = DEFAULT_SERVICE_NAME,
    otlp_endpoint: str | None = None,
    console_export: bool = False,
    sampling_rate: float = 1.0,
) -> trace.Tracer:
    """
    Initialize distributed tracing with OpenTelemetry.

    Args:
        service_name: Name of the service for identification
        otlp_endpoint: OTLP collector endpoint (e.g., "localhost:4317");
                       falls back to the OTLP_ENDPOINT environment variable
        console_export: If True, also export spans to stdout (debug)
        sampling_rate: Sampling rate 0.0-1.0 (1.0 = trace everything)

    Returns:
        Configured tracer instance
    """
    global _provider

    if _provider is not None:
        logger.warning("Tracing already initialized, returning existing tracer")
        return trace.get_tracer(service_name)

    provider = TracerProvider(
        resource=Resource(attributes={SERVICE_NAME: service_name}),
        sampler=TraceIdRatioBased(sampling_rate),
    )

    exporters = []

    endpoint = otlp_endpoint or os.getenv("OTLP_ENDPOINT")
    if endpoint:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True))
        )
        exporters.append("OTLP")
        logger.info(f"OTLP exporter configured: {endpoint}")

    if console_export or os.getenv("TRACE_CONSOLE", "").lower() == "true":
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        exporters.append("Console")

    if not exporters:
        logger.warning("No trace exporters configured, spans will be dropped")

    trace.set_tracer_provider(provider)
    _provider = provider

    logger.info(
        f"Tracing initialized: {service_name} "
        f"(exporters: {', '.join(exporters) or 'none'}, sampling: {sampling_rate})"
    )

    return trace.get_tracer(service_name)


def get_tracer(name: str = DEFAULT_SERVICE_NAME) -> trace.Tracer:
    """Get a tracer from the globally installed provider"""
    return trace.get_tracer(name)


def shutdown_tracing() -> None:
    """
    Flush pending spans and shut the provider down.

    Should be called before application exit.
    """
    global _provider

    if _provider is None:
        return

    try:
        _provider.shutdown()
        logger.info("Tracing shutdown complete")
    finally:
        _provider = None
