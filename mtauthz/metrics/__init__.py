"""
Prometheus metrics for mtauthz.
"""

from .collector import MetricConfig, MetricsCollector, create_metrics_plugin

__all__ = [
    "MetricConfig",
    "MetricsCollector",
    "create_metrics_plugin",
]
