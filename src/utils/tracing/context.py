"""
Context managers and utilities for span management.

Works the same inside coroutines: OpenTelemetry keeps the active span in a
contextvar, so each asyncio task sees the span it was created under.
"""

from contextlib import contextmanager

from opentelemetry import trace

from .tracer import get_tracer


def _attribute_value(value):
    if isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


@contextmanager
def trace_operation(
    operation_name: str,
    kind: trace.SpanKind = trace.SpanKind.INTERNAL,
    **attributes
):
    """
    Context manager for tracing operations.

    Creates a span, adds attributes, records errors and ends the span.

    Args:
        operation_name: Name of the operation being traced
        kind: Span kind (INTERNAL, CLIENT, SERVER, etc.)
        **attributes: Custom attributes to add to the span

    Yields:
        Span instance for adding custom events/attributes

    Example:
        >>> with trace_operation("sync.dispatch_chunk", chunk_index=3) as span:
        ...     task = await dispatcher.dispatch(chunk)
        ...     span.set_attribute("task_id", task.task_id)
    """
    tracer = get_tracer()

    with tracer.start_as_current_span(
        operation_name,
        kind=kind,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        for key, value in attributes.items():
            span.set_attribute(key, _attribute_value(value))

        try:
            yield span
        except Exception as e:
            span.set_attribute("error", True)
            span.set_attribute("error.type", type(e).__name__)
            span.set_attribute("error.message", str(e))
            span.record_exception(e)
            span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
            raise


def add_span_attributes(**attributes):
    """
    Add attributes to the current span.

    Example:
        >>> with trace_operation("sync.fetch"):
        ...     records = await service.fetch_by_keys(keys)
        ...     add_span_attributes(fetched=len(records))
    """
    current_span = trace.get_current_span()
    if current_span.is_recording():
        for key, value in attributes.items():
            current_span.set_attribute(key, _attribute_value(value))


def add_span_event(name: str, **attributes):
    """
    Add an event to the current span.

    Example:
        >>> with trace_operation("sync.run"):
        ...     add_span_event("phase_changed", phase="polling")
    """
    current_span = trace.get_current_span()
    if current_span.is_recording():
        current_span.add_event(
            name, attributes={k: _attribute_value(v) for k, v in attributes.items()}
        )


def trace_http_request(method: str, url: str, **extra_attrs):
    """
    Context manager for tracing outbound HTTP requests.

    Example:
        >>> with trace_http_request("POST", "http://sync.local/api/actions", action="sync"):
        ...     response = session.post(url, json=payload)
    """
    return trace_operation(
        f"http.{method.lower()}",
        kind=trace.SpanKind.CLIENT,
        **{
            "http.method": method,
            "http.url": url,
            "component": "http",
            **extra_attrs,
        }
    )
