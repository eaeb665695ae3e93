"""Tests for deploylens.analytics.anomaly_detector -- AnomalyDetector."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from deploylens.analytics.anomaly_detector import AnomalyDetector
from deploylens.models.base import (
    Alert,
    AlertSeverity,
    AnomalySeverity,
    AnomalyType,
    MetricsSnapshot,
)

NOW = datetime(2024, 6, 5, 12, 0, tzinfo=UTC)


def _alert(alert_id: str, severity: AlertSeverity) -> Alert:
    return Alert(id=alert_id, name=alert_id, severity=severity, services=["api"], timestamp=NOW)


@pytest.fixture
def detector() -> AnomalyDetector:
    return AnomalyDetector()


class TestThresholds:
    def test_healthy_metrics_produce_nothing(self, detector):
        metrics = MetricsSnapshot(
            error_rate=1.0, response_time_ms=200, cpu_percent=40, memory_percent=50
        )
        assert detector.detect(metrics) == []

    def test_values_at_threshold_do_not_fire(self, detector):
        metrics = MetricsSnapshot(
            error_rate=5.0, response_time_ms=1000, cpu_percent=80, memory_percent=90
        )
        assert detector.detect(metrics) == []

    def test_error_rate_only(self, detector):
        metrics = MetricsSnapshot(
            error_rate=6.0, response_time_ms=300, cpu_percent=40, memory_percent=50
        )
        anomalies = detector.detect(metrics)
        assert len(anomalies) == 1
        anomaly = anomalies[0]
        assert anomaly.type == AnomalyType.ERROR_RATE_SPIKE
        assert anomaly.severity == AnomalySeverity.HIGH
        assert anomaly.value == 6.0
        assert anomaly.threshold == 5.0
        assert anomaly.message == "Error rate spiked to 6%"

    def test_response_time(self, detector):
        anomalies = detector.detect(MetricsSnapshot(response_time_ms=1500))
        assert [a.type for a in anomalies] == [AnomalyType.RESPONSE_TIME_DEGRADATION]
        assert anomalies[0].severity == AnomalySeverity.MEDIUM
        assert anomalies[0].message == "Response time degraded to 1500ms"

    def test_cpu(self, detector):
        anomalies = detector.detect(MetricsSnapshot(cpu_percent=85))
        assert [a.type for a in anomalies] == [AnomalyType.CPU_SPIKE]
        assert anomalies[0].severity == AnomalySeverity.MEDIUM

    def test_memory(self, detector):
        anomalies = detector.detect(MetricsSnapshot(memory_percent=95))
        assert [a.type for a in anomalies] == [AnomalyType.MEMORY_SPIKE]
        assert anomalies[0].severity == AnomalySeverity.HIGH

    def test_custom_thresholds(self):
        detector = AnomalyDetector(error_rate_threshold=1.0, cpu_threshold=50.0)
        anomalies = detector.detect(MetricsSnapshot(error_rate=2.0, cpu_percent=60))
        assert [a.type for a in anomalies] == [
            AnomalyType.ERROR_RATE_SPIKE,
            AnomalyType.CPU_SPIKE,
        ]


class TestOrderingAndAlerts:
    def test_fixed_emission_order(self, detector):
        metrics = MetricsSnapshot(
            error_rate=10, response_time_ms=2000, cpu_percent=95, memory_percent=99
        )
        alerts = [_alert("a1", AlertSeverity.CRITICAL)]
        anomalies = detector.detect(metrics, alerts)
        assert [a.type for a in anomalies] == [
            AnomalyType.ERROR_RATE_SPIKE,
            AnomalyType.RESPONSE_TIME_DEGRADATION,
            AnomalyType.CPU_SPIKE,
            AnomalyType.MEMORY_SPIKE,
            AnomalyType.CRITICAL_ALERTS,
        ]

    def test_critical_alerts_counted(self, detector):
        alerts = [
            _alert("a1", AlertSeverity.CRITICAL),
            _alert("a2", AlertSeverity.WARNING),
            _alert("a3", AlertSeverity.CRITICAL),
        ]
        anomalies = detector.detect(MetricsSnapshot(), alerts)
        assert len(anomalies) == 1
        anomaly = anomalies[0]
        assert anomaly.type == AnomalyType.CRITICAL_ALERTS
        assert anomaly.severity == AnomalySeverity.CRITICAL
        assert anomaly.count == 2
        assert anomaly.message == "2 critical alerts detected"

    def test_non_critical_alerts_ignored(self, detector):
        alerts = [_alert("a1", AlertSeverity.HIGH), _alert("a2", AlertSeverity.WARNING)]
        assert detector.detect(MetricsSnapshot(), alerts) == []
