"""Deployment/alert correlation engine.

Matches monitoring alerts raised shortly after a deployment against the
deployment's services and scores the association:

    confidence = avg(time_proximity) * 0.5
               + avg(service_match)  * 0.3
               + 0.2 if any matched alert is critical

clamped to [0, 1]. No matched alerts means confidence 0.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import UTC, datetime, timedelta

import structlog

from deploylens.api.exceptions import MonitoringError, error_context
from deploylens.models.base import Alert, AlertSeverity, Correlation, TimeRange
from deploylens.observability.base import MonitoringSource

logger = structlog.get_logger()

TIME_PROXIMITY_WEIGHT = 0.5
SERVICE_MATCH_WEIGHT = 0.3
CRITICAL_BONUS = 0.2


def _clamp(value: float) -> float:
    return max(0.0, min(value, 1.0))


class CorrelationEngine:
    """Correlates one deployment with the alerts inside its correlation window."""

    def __init__(
        self,
        monitoring: MonitoringSource,
        window_seconds: float = 300.0,
    ) -> None:
        self._monitoring = monitoring
        self.window_seconds = window_seconds

    async def correlate(
        self,
        deployment_id: str,
        timestamp: datetime,
        services: Iterable[str],
        window_seconds: float | None = None,
    ) -> Correlation:
        """Query alerts in ``[timestamp, timestamp + window]`` and score them.

        Raises :class:`MonitoringError` when the monitoring source fails.
        """
        window = self.window_seconds if window_seconds is None else window_seconds
        service_list = list(services)
        time_range = TimeRange(start=timestamp, end=timestamp + timedelta(seconds=window))
        with error_context(MonitoringError, detail="alert query failed"):
            alerts = await self._monitoring.query_alerts(time_range, service_list)
        correlation = self.score_alerts(deployment_id, timestamp, service_list, alerts, window)
        logger.debug(
            "correlation_engine.correlated",
            deployment_id=deployment_id,
            alerts_seen=len(alerts),
            alerts_matched=len(correlation.alerts),
            confidence=correlation.confidence,
        )
        return correlation

    def score_alerts(
        self,
        deployment_id: str,
        timestamp: datetime,
        services: Sequence[str],
        alerts: Sequence[Alert],
        window_seconds: float | None = None,
        now: datetime | None = None,
    ) -> Correlation:
        """Filter ``alerts`` to the window and services, then compute confidence."""
        window = self.window_seconds if window_seconds is None else window_seconds
        wanted = set(services)

        matched: list[Alert] = []
        proximities: list[float] = []
        service_matches: list[float] = []
        for alert in alerts:
            offset = (alert.timestamp - timestamp).total_seconds()
            if offset < 0 or offset > window:
                continue
            shared = wanted.intersection(alert.services)
            if wanted and not shared:
                continue

            matched.append(alert)
            if alert.time_proximity is not None:
                proximities.append(alert.time_proximity)
            else:
                proximities.append(_clamp(1.0 - offset / window) if window > 0 else 1.0)
            if alert.service_match is not None:
                service_matches.append(alert.service_match)
            elif shared and alert.services:
                service_matches.append(len(shared) / len(set(alert.services)))
            else:
                service_matches.append(0.0)

        confidence = 0.0
        if matched:
            confidence = (sum(proximities) / len(proximities)) * TIME_PROXIMITY_WEIGHT
            confidence += (sum(service_matches) / len(service_matches)) * SERVICE_MATCH_WEIGHT
            if any(a.severity == AlertSeverity.CRITICAL for a in matched):
                confidence += CRITICAL_BONUS

        return Correlation(
            deployment_id=deployment_id,
            alerts=matched,
            confidence=round(_clamp(confidence), 4),
            timestamp=now or datetime.now(UTC),
        )
