"""
Shared utilities for the report sync pipeline

Provides:
- logging: structured logging setup and context loggers
- tracing: OpenTelemetry tracer setup and span helpers
- metrics: Prometheus metric registration helpers
- retry: async retry with bounded attempts and backoff
"""

__version__ = "1.0.0"
__all__ = ["logging", "tracing", "metrics", "retry"]
