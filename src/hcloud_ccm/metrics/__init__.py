"""Prometheus metrics server for hcloud-ccm."""

from hcloud_ccm.metrics.server import (
    MetricsServer,
    generate_metrics,
)

__all__ = [
    "MetricsServer",
    "generate_metrics",
]
