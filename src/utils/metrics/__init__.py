"""
Prometheus metrics helpers

Usage:
    from utils.metrics import get_or_create_metric, start_metrics_server

    REQUESTS_TOTAL = get_or_create_metric(
        lambda: Counter("requests_total", "Total requests", ["method"]),
        "requests_total",
    )

    start_metrics_server(port=9091)
"""

import logging
from typing import Callable, TypeVar

from prometheus_client import REGISTRY, CollectorRegistry, start_http_server

logger = logging.getLogger(__name__)

# Type variable for metric types
T = TypeVar("T")


def get_or_create_metric(
    metric_factory: Callable[[], T],
    metric_name: str,
    registry: CollectorRegistry = REGISTRY,
) -> T:
    """
    Create a new metric or return the one already registered under metric_name.

    Modules defining metrics at import time can be reloaded (tests do this)
    without tripping over duplicate registration.

    Args:
        metric_factory: Callable that creates the metric (e.g., lambda: Counter(...))
        metric_name: Name of the metric for lookup if already registered
        registry: Prometheus registry to use (default: global REGISTRY)

    Returns:
        The metric instance (either newly created or existing)
    """
    try:
        return metric_factory()
    except ValueError:
        # Metric already registered, get existing one
        existing = registry._names_to_collectors.get(metric_name)
        if existing is not None:
            return existing
        raise


def start_metrics_server(
    port: int = 9091,
    addr: str = "0.0.0.0",
    registry: CollectorRegistry = REGISTRY,
) -> None:
    """
    Expose registered metrics over HTTP for Prometheus scraping

    Args:
        port: Port to listen on (default: 9091)
        addr: Address to bind (default: all interfaces)
        registry: Registry to expose (default: global REGISTRY)
    """
    start_http_server(port, addr=addr, registry=registry)
    logger.info(f"Metrics server listening on {addr}:{port}")


__all__ = [
    "get_or_create_metric",
    "start_metrics_server",
]
