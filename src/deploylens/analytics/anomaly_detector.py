"""Threshold-based anomaly detection over a deployment's latest metrics.

Rules are evaluated independently and emitted in a fixed order:
  1. error rate above 5%              -> high      error_rate_spike
  2. response time above 1000 ms      -> medium    response_time_degradation
  3. CPU above 80%                    -> medium    cpu_spike
  4. memory above 90%                 -> high      memory_spike
  5. any correlated critical alert    -> critical  critical_alerts
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from deploylens.models.base import (
    Alert,
    AlertSeverity,
    Anomaly,
    AnomalySeverity,
    AnomalyType,
    MetricsSnapshot,
)

logger = structlog.get_logger()


class AnomalyDetector:
    """Stateless detector; the caller owns the anomaly history."""

    def __init__(
        self,
        *,
        error_rate_threshold: float = 5.0,
        response_time_threshold_ms: float = 1000.0,
        cpu_threshold: float = 80.0,
        memory_threshold: float = 90.0,
    ) -> None:
        self.error_rate_threshold = error_rate_threshold
        self.response_time_threshold_ms = response_time_threshold_ms
        self.cpu_threshold = cpu_threshold
        self.memory_threshold = memory_threshold

    def detect(
        self,
        metrics: MetricsSnapshot,
        alerts: Sequence[Alert] = (),
    ) -> list[Anomaly]:
        anomalies: list[Anomaly] = []

        if metrics.error_rate > self.error_rate_threshold:
            anomalies.append(
                Anomaly(
                    type=AnomalyType.ERROR_RATE_SPIKE,
                    severity=AnomalySeverity.HIGH,
                    value=metrics.error_rate,
                    threshold=self.error_rate_threshold,
                    message=f"Error rate spiked to {metrics.error_rate:g}%",
                )
            )

        if metrics.response_time_ms > self.response_time_threshold_ms:
            anomalies.append(
                Anomaly(
                    type=AnomalyType.RESPONSE_TIME_DEGRADATION,
                    severity=AnomalySeverity.MEDIUM,
                    value=metrics.response_time_ms,
                    threshold=self.response_time_threshold_ms,
                    message=f"Response time degraded to {metrics.response_time_ms:g}ms",
                )
            )

        if metrics.cpu_percent > self.cpu_threshold:
            anomalies.append(
                Anomaly(
                    type=AnomalyType.CPU_SPIKE,
                    severity=AnomalySeverity.MEDIUM,
                    value=metrics.cpu_percent,
                    threshold=self.cpu_threshold,
                    message=f"CPU usage at {metrics.cpu_percent:g}%",
                )
            )

        if metrics.memory_percent > self.memory_threshold:
            anomalies.append(
                Anomaly(
                    type=AnomalyType.MEMORY_SPIKE,
                    severity=AnomalySeverity.HIGH,
                    value=metrics.memory_percent,
                    threshold=self.memory_threshold,
                    message=f"Memory usage at {metrics.memory_percent:g}%",
                )
            )

        critical = [a for a in alerts if a.severity == AlertSeverity.CRITICAL]
        if critical:
            anomalies.append(
                Anomaly(
                    type=AnomalyType.CRITICAL_ALERTS,
                    severity=AnomalySeverity.CRITICAL,
                    value=float(len(critical)),
                    count=len(critical),
                    message=f"{len(critical)} critical alerts detected",
                )
            )

        if anomalies:
            logger.debug(
                "anomaly_detector.anomalies_found",
                types=[a.type.value for a in anomalies],
            )
        return anomalies
