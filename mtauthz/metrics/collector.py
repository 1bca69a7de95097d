"""
Prometheus metrics integration for mtauthz.

The collector records permission decisions, check latency and operation
failures. create_metrics_plugin() wires a collector into an MTAuthz instance
through global hooks.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

from ..hooks.global_hooks import GlobalHooks
from ..plugin.types import PluginDefinition


logger = logging.getLogger(__name__)


@dataclass
class MetricConfig:
    """Configuration for metrics collection."""
    enabled: bool = True
    namespace: str = "mtauthz"


class MetricsCollector:
    """Metrics collector for authorization operations."""

    def __init__(self, config: Optional[MetricConfig] = None,
                 registry: Optional[CollectorRegistry] = None):
        """
        Args:
            config: Metrics configuration
            registry: Prometheus registry; a private one is created by default
                so several collectors can coexist in one process
        """
        self.config = config or MetricConfig()
        self.registry = registry or CollectorRegistry()
        self._metrics_cache: Dict[str, int] = {}

        ns = self.config.namespace
        self.decisions = Counter(
            f'{ns}_permission_checks',
            'Total number of permission check decisions',
            ['resource', 'allowed'],
            registry=self.registry
        )
        self.check_latency = Histogram(
            f'{ns}_permission_check_duration_seconds',
            'Permission check duration in seconds',
            ['resource'],
            buckets=[0.0001, 0.0002, 0.0005, 0.001, 0.002, 0.005, 0.01, 0.02, 0.05, 0.1],
            registry=self.registry
        )
        self.operations = Counter(
            f'{ns}_operations',
            'Total number of completed resource operations',
            ['operation', 'resource'],
            registry=self.registry
        )
        self.errors = Counter(
            f'{ns}_operation_errors',
            'Total number of failed resource operations',
            ['operation', 'resource', 'error'],
            registry=self.registry
        )

        logger.info("Metrics collector initialized")

    def _count(self, key: str) -> None:
        self._metrics_cache[key] = self._metrics_cache.get(key, 0) + 1

    async def record_decision(self, resource: str, allowed: bool, duration: float = 0.0) -> None:
        """Record a permission decision and its latency."""
        if not self.config.enabled:
            return

        allowed_str = "true" if allowed else "false"
        self._count(f"decisions_{resource}_{allowed_str}")
        self.decisions.labels(resource=resource, allowed=allowed_str).inc()
        self.check_latency.labels(resource=resource).observe(duration)

        logger.debug(f"Recorded decision: {resource} -> {allowed} ({duration:.6f}s)")

    async def record_operation(self, operation: str, resource: str) -> None:
        if not self.config.enabled:
            return

        self._count(f"operations_{operation}_{resource}")
        self.operations.labels(operation=operation, resource=resource).inc()

    async def record_error(self, operation: str, resource: str, error: BaseException) -> None:
        """Record a failed operation, labelled with the exception class name."""
        if not self.config.enabled:
            return

        error_name = type(error).__name__
        self._count(f"errors_{operation}_{resource}")
        self.errors.labels(operation=operation, resource=resource, error=error_name).inc()

        logger.debug(f"Recorded error: {operation} on {resource} -> {error_name}")

    def export_prometheus_metrics(self) -> str:
        """Export metrics in Prometheus text format."""
        return generate_latest(self.registry).decode('utf-8')

    def get_metrics_summary(self) -> Dict[str, Any]:
        return {
            'enabled': self.config.enabled,
            'counters': dict(self._metrics_cache)
        }


def create_metrics_plugin(collector: Optional[MetricsCollector] = None) -> PluginDefinition:
    """
    Package a collector as a plugin that records every operation run through
    MTAuthz hooks. The collector is exposed as the plugin's ``state``.
    """
    collector = collector or MetricsCollector()

    async def after_any(context: Any, operation: str, resource_name: str, result: Any) -> None:
        allowed = getattr(result, 'allowed', None)
        if isinstance(allowed, bool):
            await collector.record_decision(resource_name, allowed,
                                            getattr(result, 'evaluation_time', 0.0))
        await collector.record_operation(operation, resource_name)

    async def on_error(context: Any, operation: str, resource_name: str, error: BaseException) -> None:
        await collector.record_error(operation, resource_name, error)

    def install(context) -> None:
        context.register_global_hooks(GlobalHooks(after_any=[after_any], on_error=[on_error]))

    return PluginDefinition(
        name="metrics",
        version="0.1.0",
        description="Prometheus metrics for authorization decisions",
        install=install,
        state=collector,
    )
