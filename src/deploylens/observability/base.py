"""Base interface for monitoring data sources.

Monitoring integrations (Prometheus, Datadog, CloudWatch, ...) implement
this interface so the deployment tracker can query health metrics and
alerts uniformly.
"""

from abc import ABC, abstractmethod

from deploylens.models.base import Alert, Deployment, MetricsSnapshot, TimeRange


class MonitoringSource(ABC):
    """Abstract interface for deployment health metrics and alerts."""

    source_name: str

    @abstractmethod
    async def get_deployment_metrics(self, deployment: Deployment) -> MetricsSnapshot:
        """Current error rate, latency, CPU and memory for a deployment."""

    @abstractmethod
    async def query_alerts(
        self,
        time_range: TimeRange,
        services: list[str],
    ) -> list[Alert]:
        """Alerts raised within the time range for any of the given services.

        An empty ``services`` list means no service filter.
        """
