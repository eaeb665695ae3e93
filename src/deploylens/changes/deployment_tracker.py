"""Live deployment lifecycle tracking.

Detects new deployments by polling the source-control head, then watches
each deployment on its own asyncio task:

    fetch metrics -> correlate alerts -> detect anomalies -> update status

State machine (``completed`` and ``failed`` are terminal):

    in_progress -> completed   no anomaly ever recorded and the deployment
                               is older than the completion threshold
    in_progress -> degraded    two or more high anomalies, none critical
    degraded    -> degraded
    *           -> failed      any critical anomaly; creates an incident

Terminal deployments leave the active table and are archived to history.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import BaseModel, Field

from deploylens.analytics.anomaly_detector import AnomalyDetector
from deploylens.api.exceptions import DeploymentNotFoundError, IncidentNotFoundError
from deploylens.changes.correlation import CorrelationEngine
from deploylens.changes.risk_scorer import CommitRiskScorer
from deploylens.config.settings import Settings
from deploylens.connectors.base import SourceControlConnector
from deploylens.incidents.recommendations import RecommendationGenerator
from deploylens.messaging.broadcast import EventSink
from deploylens.messaging.topics import (
    DEPLOYMENT_ANOMALIES,
    DEPLOYMENT_DEGRADED,
    DEPLOYMENT_UPDATE,
    HIGH_RISK_DEPLOYMENT,
    INCIDENT_DETECTED,
    NEW_DEPLOYMENT,
)
from deploylens.models.base import (
    Anomaly,
    AnomalySeverity,
    Commit,
    Deployment,
    DeploymentStatus,
    Incident,
)
from deploylens.observability.base import MonitoringSource

logger = structlog.get_logger()

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TrackerConfig(BaseModel):
    """Timing and scope settings for a :class:`DeploymentLifecycleTracker`."""

    detection_interval_seconds: float = Field(default=5.0, gt=0)
    monitoring_interval_seconds: float = Field(default=10.0, gt=0)
    correlation_window_seconds: float = Field(default=300.0, gt=0)
    completion_threshold_seconds: float = Field(default=600.0, ge=0)
    history_limit: int = Field(default=50, ge=1)
    high_risk_threshold: float = 0.7
    environment: str = "development"
    services: list[str] = Field(default_factory=list)

    @classmethod
    def from_settings(cls, settings: Settings) -> TrackerConfig:
        return cls(
            detection_interval_seconds=settings.detection_interval_seconds,
            monitoring_interval_seconds=settings.monitoring_interval_seconds,
            correlation_window_seconds=settings.correlation_window_seconds,
            completion_threshold_seconds=settings.completion_threshold_seconds,
            history_limit=settings.history_limit,
            high_risk_threshold=settings.high_risk_threshold,
            environment=settings.environment,
            services=list(settings.services),
        )


class DeploymentLifecycleTracker:
    """Owns the active-deployment table and one monitoring task per deployment.

    All collaborators are injected, so several trackers can run side by
    side (for example one per environment) and tests can drive a tracker
    without a real repository or monitoring backend.
    """

    def __init__(
        self,
        source_control: SourceControlConnector,
        monitoring: MonitoringSource,
        *,
        sink: EventSink | None = None,
        config: TrackerConfig | None = None,
        scorer: CommitRiskScorer | None = None,
        detector: AnomalyDetector | None = None,
        correlation_engine: CorrelationEngine | None = None,
        recommender: RecommendationGenerator | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.config = config or TrackerConfig()
        self._source_control = source_control
        self._monitoring = monitoring
        self._sink = sink
        self._scorer = scorer or CommitRiskScorer()
        self._detector = detector or AnomalyDetector()
        self._correlation_engine = correlation_engine or CorrelationEngine(
            monitoring, window_seconds=self.config.correlation_window_seconds
        )
        self._recommender = recommender or RecommendationGenerator()
        self._clock = clock or _utcnow

        self._active: dict[str, Deployment] = {}
        self._history: OrderedDict[str, Deployment] = OrderedDict()
        self._incidents: dict[str, Incident] = {}
        self._poll_locks: dict[str, asyncio.Lock] = {}
        self._monitor_tasks: dict[str, asyncio.Task[None]] = {}
        self._detection_task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()
        self._running = False
        self._last_head: str | None = None

    # -- Lifecycle ----------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start head detection; the first check runs immediately.

        Deployments already in the active table (registered before start or
        left over from an earlier stop) get their monitoring loops back.
        """
        if self._running:
            return
        self._stopping = asyncio.Event()
        self._running = True
        self._detection_task = asyncio.create_task(
            self._detection_loop(), name="deploylens-detection"
        )
        for deployment in self.list_active_deployments():
            if not deployment.is_terminal:
                self._watch(deployment.id)
        logger.info(
            "deployment_tracker.started",
            resumed=len(self._monitor_tasks),
            detection_interval=self.config.detection_interval_seconds,
            monitoring_interval=self.config.monitoring_interval_seconds,
            environment=self.config.environment,
        )

    async def stop(self) -> None:
        """Stop detection and every monitoring loop.

        Sleeping loops wake and exit at once. A poll already in flight is
        allowed to finish, but no further cycle is scheduled after it.
        """
        if not self._running:
            return
        self._running = False
        self._stopping.set()
        tasks = list(self._monitor_tasks.values())
        if self._detection_task is not None:
            tasks.append(self._detection_task)
        await asyncio.gather(*tasks, return_exceptions=True)
        self._detection_task = None
        if self._sink is not None:
            try:
                await self._sink.drain()
            except Exception as e:
                logger.warning("deployment_tracker.drain_failed", error=str(e))
        logger.info("deployment_tracker.stopped", active=len(self._active))

    async def _sleep(self, seconds: float) -> bool:
        """Wait ``seconds``; return True early if a stop was requested."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except TimeoutError:
            return False
        return True

    async def _detection_loop(self) -> None:
        while not self._stopping.is_set():
            await self.check_for_new_deployment()
            if await self._sleep(self.config.detection_interval_seconds):
                break

    async def _monitor_loop(self, deployment_id: str) -> None:
        try:
            while not self._stopping.is_set():
                if await self._sleep(self.config.monitoring_interval_seconds):
                    break
                deployment = await self.poll_deployment(deployment_id)
                if deployment.is_terminal:
                    break
        except Exception:
            logger.exception("deployment_tracker.monitor_loop_failed", deployment_id=deployment_id)
        finally:
            self._monitor_tasks.pop(deployment_id, None)

    # -- Detection ----------------------------------------------------------

    async def check_for_new_deployment(self) -> Deployment | None:
        """Register a deployment if the source-control head has moved."""
        try:
            head = await self._source_control.get_head_commit()
        except Exception as e:
            logger.error("deployment_tracker.head_check_failed", error=str(e))
            return None
        if head is None or head == self._last_head:
            return None

        try:
            commit = await self._source_control.get_commit(head)
        except Exception as e:
            # Head not remembered, so the next detection tick retries.
            logger.error("deployment_tracker.commit_fetch_failed", commit=head, error=str(e))
            return None

        self._last_head = head
        return self.register_deployment(commit)

    def register_deployment(self, commit: Commit) -> Deployment:
        """Create an in-progress deployment for ``commit`` and start watching it."""
        deployment = Deployment(
            created_at=self._clock(),
            commit=commit,
            environment=self.config.environment,
            services=list(self.config.services),
            risk=self._scorer.score_deployment(commit),
        )
        self._active[deployment.id] = deployment
        self._poll_locks[deployment.id] = asyncio.Lock()

        self._publish(NEW_DEPLOYMENT, {"deployment": self._dump(deployment)})
        if deployment.risk.score > self.config.high_risk_threshold:
            self._publish(HIGH_RISK_DEPLOYMENT, {"deployment": self._dump(deployment)})

        logger.info(
            "deployment_tracker.deployment_detected",
            deployment_id=deployment.id,
            commit=commit.hash,
            risk_score=deployment.risk.score,
        )

        if self._running and not self._stopping.is_set():
            self._watch(deployment.id)
        return deployment

    def _watch(self, deployment_id: str) -> None:
        if deployment_id in self._monitor_tasks:
            return
        self._monitor_tasks[deployment_id] = asyncio.create_task(
            self._monitor_loop(deployment_id),
            name=f"deploylens-monitor-{deployment_id}",
        )

    # -- Polling ------------------------------------------------------------

    async def poll_deployment(self, deployment_id: str) -> Deployment:
        """Run one monitoring cycle for a deployment.

        Cycles for the same deployment are serialized. Terminal deployments
        are returned unchanged.
        """
        deployment = self.get_deployment(deployment_id)
        if deployment.is_terminal:
            return deployment

        lock = self._poll_locks.setdefault(deployment_id, asyncio.Lock())
        async with lock:
            if deployment.is_terminal:
                return deployment
            await self._run_cycle(deployment)

        if deployment.is_terminal:
            self._archive(deployment)
        return deployment

    async def _run_cycle(self, deployment: Deployment) -> None:
        try:
            metrics = await self._monitoring.get_deployment_metrics(deployment)
        except Exception as e:
            logger.warning(
                "deployment_tracker.metrics_fetch_failed",
                deployment_id=deployment.id,
                error=str(e),
            )
            return
        deployment.metrics = metrics

        try:
            deployment.correlation = await self._correlation_engine.correlate(
                deployment.id,
                deployment.created_at,
                deployment.services,
                self.config.correlation_window_seconds,
            )
        except Exception as e:
            logger.warning(
                "deployment_tracker.correlation_failed",
                deployment_id=deployment.id,
                error=str(e),
            )

        alerts = deployment.correlation.alerts if deployment.correlation else []
        anomalies = self._detector.detect(metrics, alerts)
        if anomalies:
            deployment.anomalies.extend(anomalies)
            self._publish(
                DEPLOYMENT_ANOMALIES,
                {
                    "deployment_id": deployment.id,
                    "anomalies": [a.model_dump(mode="json") for a in anomalies],
                },
            )
            logger.warning(
                "deployment_tracker.anomalies_detected",
                deployment_id=deployment.id,
                anomaly_count=len(anomalies),
                severities=[a.severity.value for a in anomalies],
            )

        self._update_status(deployment, anomalies)
        self._publish(DEPLOYMENT_UPDATE, {"deployment": self._dump(deployment)})

    def _update_status(self, deployment: Deployment, anomalies: list[Anomaly]) -> None:
        now = self._clock()
        critical = [a for a in anomalies if a.severity == AnomalySeverity.CRITICAL]
        high = [a for a in anomalies if a.severity == AnomalySeverity.HIGH]

        if critical:
            deployment.status = DeploymentStatus.FAILED
            deployment.completed_at = now
            self._trigger_incident(deployment, anomalies)
        elif len(high) >= 2:
            if deployment.status != DeploymentStatus.DEGRADED:
                deployment.status = DeploymentStatus.DEGRADED
                self._publish(
                    DEPLOYMENT_DEGRADED,
                    {
                        "deployment_id": deployment.id,
                        "anomalies": [a.model_dump(mode="json") for a in anomalies],
                    },
                )
                logger.warning(
                    "deployment_tracker.deployment_degraded", deployment_id=deployment.id
                )
        elif (
            deployment.status == DeploymentStatus.IN_PROGRESS
            and not deployment.anomalies
            and (now - deployment.created_at).total_seconds()
            > self.config.completion_threshold_seconds
        ):
            deployment.status = DeploymentStatus.COMPLETED
            deployment.completed_at = now
            logger.info("deployment_tracker.deployment_completed", deployment_id=deployment.id)

    def _trigger_incident(self, deployment: Deployment, anomalies: list[Anomaly]) -> Incident:
        incident = Incident(
            timestamp=self._clock(),
            deployment_id=deployment.id,
            commit_hash=deployment.commit.hash,
            severity=AnomalySeverity.CRITICAL,
            title=f"Deployment {deployment.id} failed with critical anomalies",
            description=self._recommender.describe_incident(deployment, anomalies),
            anomalies=list(anomalies),
            recommendations=self._recommender.for_deployment(deployment, anomalies),
        )
        self._incidents[incident.id] = incident
        deployment.incident_id = incident.id
        self._publish(INCIDENT_DETECTED, {"incident": incident.model_dump(mode="json")})
        logger.error(
            "deployment_tracker.incident_triggered",
            incident_id=incident.id,
            deployment_id=deployment.id,
            severity=incident.severity.value,
        )
        return incident

    def _archive(self, deployment: Deployment) -> None:
        if self._active.pop(deployment.id, None) is None:
            return
        self._poll_locks.pop(deployment.id, None)
        self._history[deployment.id] = deployment
        while len(self._history) > self.config.history_limit:
            self._history.popitem(last=False)

    # -- Events -------------------------------------------------------------

    def _publish(self, event_type: str, payload: dict[str, Any]) -> None:
        if self._sink is None:
            return
        try:
            self._sink.publish(event_type, payload)
        except Exception as e:
            logger.warning("deployment_tracker.publish_failed", event_type=event_type, error=str(e))

    @staticmethod
    def _dump(deployment: Deployment) -> dict[str, Any]:
        return deployment.model_dump(mode="json")

    # -- Queries ------------------------------------------------------------

    def get_deployment(self, deployment_id: str) -> Deployment:
        """Return an active or archived deployment; unknown ids raise."""
        deployment = self._active.get(deployment_id) or self._history.get(deployment_id)
        if deployment is None:
            raise DeploymentNotFoundError(deployment_id)
        return deployment

    def list_active_deployments(self) -> list[Deployment]:
        return sorted(self._active.values(), key=lambda d: d.created_at)

    def list_history(self, limit: int = 50) -> list[Deployment]:
        """Archived (terminal) deployments, newest last."""
        if limit <= 0:
            return []
        return list(self._history.values())[-limit:]

    def get_incident(self, incident_id: str) -> Incident:
        incident = self._incidents.get(incident_id)
        if incident is None:
            raise IncidentNotFoundError(incident_id)
        return incident

    def list_incidents(self) -> list[Incident]:
        return sorted(self._incidents.values(), key=lambda i: i.timestamp)
