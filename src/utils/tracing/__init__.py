"""
Distributed tracing using OpenTelemetry.

Instruments:
- Pipeline runs and their phases
- Remote dispatch, poll and fetch calls
- Outbound HTTP requests
"""

from .context import add_span_attributes, add_span_event, trace_http_request, trace_operation
from .tracer import get_tracer, initialize_tracing, shutdown_tracing

__all__ = [
    "initialize_tracing",
    "get_tracer",
    "shutdown_tracing",
    "trace_operation",
    "trace_http_request",
    "add_span_attributes",
    "add_span_event",
]
