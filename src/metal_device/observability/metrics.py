"""Prometheus metrics for device lifecycle operations.

Usage::

    from metal_device.observability.metrics import LIFECYCLE_TRANSITIONS_TOTAL

    LIFECYCLE_TRANSITIONS_TOTAL.labels(phase="active").inc()
"""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)

LIFECYCLE_TRANSITIONS_TOTAL = Counter(
    "metal_device_lifecycle_transitions_total",
    "Device lifecycle phase transitions.",
    labelnames=["phase"],
    registry=REGISTRY,
)

POLLS_TOTAL = Counter(
    "metal_device_polls_total",
    "Remote polls issued while waiting on a device, by outcome.",
    labelnames=["operation", "outcome"],
    registry=REGISTRY,
)

PROVISION_DURATION_SECONDS = Histogram(
    "metal_device_provision_duration_seconds",
    "Time from accepted create request to active device.",
    buckets=(30, 60, 120, 300, 600, 900, 1200, 1800, 2700, 3600),
    registry=REGISTRY,
)


def metrics_text() -> tuple[bytes, str]:
    """Generate Prometheus exposition text and content-type header."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
