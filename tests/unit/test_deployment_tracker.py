"""Tests for deploylens.changes.deployment_tracker -- DeploymentLifecycleTracker."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from deploylens.api.exceptions import DeploymentNotFoundError, IncidentNotFoundError
from deploylens.changes.deployment_tracker import DeploymentLifecycleTracker, TrackerConfig
from deploylens.config.settings import Settings
from deploylens.messaging.broadcast import Broadcaster
from deploylens.messaging.topics import (
    DEPLOYMENT_ANOMALIES,
    DEPLOYMENT_DEGRADED,
    DEPLOYMENT_UPDATE,
    HIGH_RISK_DEPLOYMENT,
    INCIDENT_DETECTED,
    NEW_DEPLOYMENT,
    EventEnvelope,
)
from deploylens.models.base import (
    Alert,
    AlertSeverity,
    AnomalyType,
    Commit,
    DeploymentStatus,
    MetricsSnapshot,
    Priority,
)

T0 = datetime(2024, 6, 5, 12, 0, tzinfo=UTC)

HEALTHY = MetricsSnapshot(error_rate=0.5, response_time_ms=120, cpu_percent=30, memory_percent=40)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def _commit(hash_: str = "abc123def456", **kw) -> Commit:
    return Commit(
        hash=hash_,
        message=kw.pop("message", "Add retry budget to payment client"),
        author=kw.pop("author", "dana"),
        timestamp=kw.pop("timestamp", T0),
        files=kw.pop("files", ["src/payments/client.py"]),
        **kw,
    )


def _event_types(sink: MagicMock) -> list[str]:
    return [c.args[0] for c in sink.publish.call_args_list]


@pytest.fixture
def source_control() -> AsyncMock:
    scm = AsyncMock()
    scm.get_head_commit.return_value = "abc123def456"
    scm.get_commit.return_value = _commit()
    return scm


@pytest.fixture
def monitoring() -> AsyncMock:
    source = AsyncMock()
    source.get_deployment_metrics.return_value = HEALTHY
    source.query_alerts.return_value = []
    return source


@pytest.fixture
def sink() -> MagicMock:
    return MagicMock()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tracker(source_control, monitoring, sink, clock) -> DeploymentLifecycleTracker:
    return DeploymentLifecycleTracker(
        source_control,
        monitoring,
        sink=sink,
        config=TrackerConfig(services=["api"], environment="production", history_limit=3),
        clock=clock,
    )


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class TestTrackerConfig:
    def test_defaults(self):
        config = TrackerConfig()
        assert config.detection_interval_seconds == 5.0
        assert config.monitoring_interval_seconds == 10.0
        assert config.correlation_window_seconds == 300.0
        assert config.completion_threshold_seconds == 600.0

    def test_from_settings(self):
        settings = Settings(
            detection_interval_seconds=1,
            monitoring_interval_seconds=2,
            services=["api", "web"],
            environment="staging",
        )
        config = TrackerConfig.from_settings(settings)
        assert config.detection_interval_seconds == 1
        assert config.monitoring_interval_seconds == 2
        assert config.services == ["api", "web"]
        assert config.environment == "staging"


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


class TestDetection:
    @pytest.mark.asyncio
    async def test_new_head_registers_deployment(self, tracker, sink):
        deployment = await tracker.check_for_new_deployment()
        assert deployment is not None
        assert deployment.id.startswith("dep-")
        assert deployment.status == DeploymentStatus.IN_PROGRESS
        assert deployment.created_at == T0
        assert deployment.environment == "production"
        assert deployment.services == ["api"]
        assert tracker.list_active_deployments() == [deployment]
        assert _event_types(sink) == [NEW_DEPLOYMENT]

    @pytest.mark.asyncio
    async def test_same_head_is_not_registered_twice(self, tracker):
        await tracker.check_for_new_deployment()
        assert await tracker.check_for_new_deployment() is None
        assert len(tracker.list_active_deployments()) == 1

    @pytest.mark.asyncio
    async def test_no_head(self, tracker, source_control):
        source_control.get_head_commit.return_value = None
        assert await tracker.check_for_new_deployment() is None

    @pytest.mark.asyncio
    async def test_head_failure_is_logged_not_raised(self, tracker, source_control):
        source_control.get_head_commit.side_effect = RuntimeError("not a git repository")
        assert await tracker.check_for_new_deployment() is None

    @pytest.mark.asyncio
    async def test_commit_fetch_failure_retries_next_tick(self, tracker, source_control):
        source_control.get_commit.side_effect = [RuntimeError("bad object"), _commit()]
        assert await tracker.check_for_new_deployment() is None
        assert await tracker.check_for_new_deployment() is not None

    @pytest.mark.asyncio
    async def test_high_risk_deployment_event(self, tracker, sink):
        risky = _commit(
            message="urgent fix",
            timestamp=datetime(2024, 6, 2, 2, 0, tzinfo=UTC),
            files=["config/production.yml"],
            insertions=400,
            deletions=200,
        )
        deployment = tracker.register_deployment(risky)
        assert deployment.risk.score == 1.0
        assert _event_types(sink) == [NEW_DEPLOYMENT, HIGH_RISK_DEPLOYMENT]

    def test_sink_failure_does_not_break_registration(self, tracker, sink):
        sink.publish.side_effect = RuntimeError("observer gone")
        deployment = tracker.register_deployment(_commit())
        assert tracker.get_deployment(deployment.id) is deployment


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------


class TestStatusTransitions:
    @pytest.mark.asyncio
    async def test_healthy_deployment_stays_in_progress_before_threshold(self, tracker, sink):
        deployment = tracker.register_deployment(_commit())
        result = await tracker.poll_deployment(deployment.id)
        assert result.status == DeploymentStatus.IN_PROGRESS
        assert result.metrics == HEALTHY
        assert result.correlation is not None
        assert result.correlation.confidence == 0.0
        assert _event_types(sink)[-1] == DEPLOYMENT_UPDATE

    @pytest.mark.asyncio
    async def test_completes_after_threshold_and_moves_to_history(self, tracker, clock):
        deployment = tracker.register_deployment(_commit())
        await tracker.poll_deployment(deployment.id)
        clock.advance(601)
        result = await tracker.poll_deployment(deployment.id)

        assert result.status == DeploymentStatus.COMPLETED
        assert result.completed_at == clock.now
        assert tracker.list_active_deployments() == []
        assert tracker.list_history() == [result]
        assert tracker.get_deployment(deployment.id) is result

    @pytest.mark.asyncio
    async def test_single_high_anomaly_stays_in_progress(self, tracker, monitoring, sink):
        monitoring.get_deployment_metrics.return_value = MetricsSnapshot(
            error_rate=6, response_time_ms=300, cpu_percent=40, memory_percent=50
        )
        deployment = tracker.register_deployment(_commit())
        result = await tracker.poll_deployment(deployment.id)

        assert result.status == DeploymentStatus.IN_PROGRESS
        assert [a.type for a in result.anomalies] == [AnomalyType.ERROR_RATE_SPIKE]
        assert DEPLOYMENT_ANOMALIES in _event_types(sink)

    @pytest.mark.asyncio
    async def test_anomaly_history_blocks_completion(self, tracker, monitoring, clock):
        monitoring.get_deployment_metrics.return_value = MetricsSnapshot(error_rate=6)
        deployment = tracker.register_deployment(_commit())
        await tracker.poll_deployment(deployment.id)

        monitoring.get_deployment_metrics.return_value = HEALTHY
        clock.advance(3600)
        result = await tracker.poll_deployment(deployment.id)
        assert result.status == DeploymentStatus.IN_PROGRESS
        assert len(result.anomalies) == 1

    @pytest.mark.asyncio
    async def test_two_high_anomalies_degrade_once(self, tracker, monitoring, sink):
        monitoring.get_deployment_metrics.return_value = MetricsSnapshot(
            error_rate=12, memory_percent=95
        )
        deployment = tracker.register_deployment(_commit())
        await tracker.poll_deployment(deployment.id)
        result = await tracker.poll_deployment(deployment.id)

        assert result.status == DeploymentStatus.DEGRADED
        assert _event_types(sink).count(DEPLOYMENT_DEGRADED) == 1
        assert len(result.anomalies) == 4
        assert tracker.list_active_deployments() == [result]

    @pytest.mark.asyncio
    async def test_critical_alert_fails_deployment_and_raises_incident(
        self, tracker, monitoring, sink, clock
    ):
        monitoring.query_alerts.return_value = [
            Alert(
                id="alert-1",
                name="PaymentsDown",
                severity=AlertSeverity.CRITICAL,
                services=["api"],
                timestamp=T0 + timedelta(seconds=30),
            )
        ]
        deployment = tracker.register_deployment(_commit())
        clock.advance(45)
        result = await tracker.poll_deployment(deployment.id)

        assert result.status == DeploymentStatus.FAILED
        assert result.completed_at == clock.now
        assert result.correlation is not None
        assert result.correlation.confidence > 0.5
        assert result.incident_id is not None

        incident = tracker.get_incident(result.incident_id)
        assert incident.deployment_id == deployment.id
        assert incident.commit_hash == "abc123def456"
        assert incident.recommendations[0].category == "rollback"
        assert incident.recommendations[0].priority == Priority.HIGH
        assert tracker.list_incidents() == [incident]
        assert INCIDENT_DETECTED in _event_types(sink)
        assert tracker.list_active_deployments() == []

    @pytest.mark.asyncio
    async def test_degraded_can_still_fail(self, tracker, monitoring):
        monitoring.get_deployment_metrics.return_value = MetricsSnapshot(
            error_rate=12, memory_percent=95
        )
        deployment = tracker.register_deployment(_commit())
        await tracker.poll_deployment(deployment.id)
        assert deployment.status == DeploymentStatus.DEGRADED

        monitoring.query_alerts.return_value = [
            Alert(id="a", severity=AlertSeverity.CRITICAL, services=["api"], timestamp=T0)
        ]
        result = await tracker.poll_deployment(deployment.id)
        assert result.status == DeploymentStatus.FAILED

    @pytest.mark.asyncio
    async def test_terminal_deployment_is_never_polled_again(self, tracker, monitoring, clock):
        deployment = tracker.register_deployment(_commit())
        clock.advance(601)
        await tracker.poll_deployment(deployment.id)
        assert deployment.status == DeploymentStatus.COMPLETED

        calls = monitoring.get_deployment_metrics.await_count
        monitoring.get_deployment_metrics.return_value = MetricsSnapshot(error_rate=50)
        result = await tracker.poll_deployment(deployment.id)
        assert result.status == DeploymentStatus.COMPLETED
        assert result.anomalies == []
        assert monitoring.get_deployment_metrics.await_count == calls


# ---------------------------------------------------------------------------
# Collaborator failures
# ---------------------------------------------------------------------------


class TestCollaboratorFailures:
    @pytest.mark.asyncio
    async def test_metrics_failure_skips_cycle(self, tracker, monitoring, sink, clock):
        monitoring.get_deployment_metrics.side_effect = TimeoutError("metrics backend slow")
        deployment = tracker.register_deployment(_commit())
        clock.advance(3600)
        result = await tracker.poll_deployment(deployment.id)

        assert result.status == DeploymentStatus.IN_PROGRESS
        assert result.metrics is None
        assert DEPLOYMENT_UPDATE not in _event_types(sink)
        monitoring.query_alerts.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_correlation_failure_keeps_previous_correlation(self, tracker, monitoring):
        deployment = tracker.register_deployment(_commit())
        await tracker.poll_deployment(deployment.id)
        previous = deployment.correlation

        monitoring.query_alerts.side_effect = ConnectionError("alertmanager down")
        monitoring.get_deployment_metrics.return_value = MetricsSnapshot(error_rate=9)
        result = await tracker.poll_deployment(deployment.id)

        assert result.correlation is previous
        assert [a.type for a in result.anomalies] == [AnomalyType.ERROR_RATE_SPIKE]


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQueries:
    def test_unknown_deployment_raises(self, tracker):
        with pytest.raises(DeploymentNotFoundError):
            tracker.get_deployment("dep-missing")

    @pytest.mark.asyncio
    async def test_poll_unknown_deployment_raises(self, tracker):
        with pytest.raises(DeploymentNotFoundError):
            await tracker.poll_deployment("dep-missing")

    def test_unknown_incident_raises(self, tracker):
        with pytest.raises(IncidentNotFoundError):
            tracker.get_incident("inc-missing")

    @pytest.mark.asyncio
    async def test_history_is_bounded(self, tracker, clock):
        ids = []
        for i in range(5):
            deployment = tracker.register_deployment(_commit(hash_=f"{i:012d}"))
            ids.append(deployment.id)
        clock.advance(601)
        for deployment_id in ids:
            await tracker.poll_deployment(deployment_id)

        history = tracker.list_history()
        assert [d.id for d in history] == ids[-3:]
        assert [d.id for d in tracker.list_history(limit=1)] == ids[-1:]
        with pytest.raises(DeploymentNotFoundError):
            tracker.get_deployment(ids[0])

    def test_active_deployments_ordered_by_creation(self, tracker, clock):
        first = tracker.register_deployment(_commit(hash_="a" * 12))
        clock.advance(5)
        second = tracker.register_deployment(_commit(hash_="b" * 12))
        assert tracker.list_active_deployments() == [first, second]


# ---------------------------------------------------------------------------
# Background loops
# ---------------------------------------------------------------------------


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_detects_immediately(self, source_control, monitoring):
        tracker = DeploymentLifecycleTracker(
            source_control,
            monitoring,
            config=TrackerConfig(detection_interval_seconds=60, monitoring_interval_seconds=60),
        )
        await tracker.start()
        try:
            for _ in range(50):
                if tracker.list_active_deployments():
                    break
                await asyncio.sleep(0.01)
            assert tracker.is_running
            assert len(tracker.list_active_deployments()) == 1
        finally:
            await asyncio.wait_for(tracker.stop(), timeout=1)
        assert not tracker.is_running

    @pytest.mark.asyncio
    async def test_stop_lets_in_flight_poll_finish_and_schedules_no_more(
        self, source_control, monitoring
    ):
        entered = asyncio.Event()
        release = asyncio.Event()
        calls = 0

        async def slow_metrics(deployment):
            nonlocal calls
            calls += 1
            entered.set()
            await release.wait()
            return HEALTHY

        monitoring.get_deployment_metrics.side_effect = slow_metrics
        tracker = DeploymentLifecycleTracker(
            source_control,
            monitoring,
            config=TrackerConfig(
                detection_interval_seconds=0.01, monitoring_interval_seconds=0.01
            ),
        )
        await tracker.start()
        await asyncio.wait_for(entered.wait(), timeout=1)

        stop_task = asyncio.create_task(tracker.stop())
        await asyncio.sleep(0.05)
        assert not stop_task.done()

        release.set()
        await asyncio.wait_for(stop_task, timeout=1)
        await asyncio.sleep(0.05)

        assert calls == 1
        deployment = tracker.list_active_deployments()[0]
        assert deployment.metrics == HEALTHY
        assert not tracker.is_running

    @pytest.mark.asyncio
    async def test_stop_wakes_sleeping_loops(self, source_control, monitoring):
        tracker = DeploymentLifecycleTracker(
            source_control,
            monitoring,
            config=TrackerConfig(detection_interval_seconds=3600, monitoring_interval_seconds=3600),
        )
        await tracker.start()
        await asyncio.sleep(0.02)
        await asyncio.wait_for(tracker.stop(), timeout=1)
        monitoring.get_deployment_metrics.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_start_and_stop_are_idempotent(self, source_control, monitoring):
        tracker = DeploymentLifecycleTracker(source_control, monitoring)
        await tracker.stop()
        await tracker.start()
        await tracker.start()
        await tracker.stop()
        await tracker.stop()
        assert not tracker.is_running

    @pytest.mark.asyncio
    async def test_deployment_registered_before_start_is_monitored(
        self, source_control, monitoring
    ):
        source_control.get_head_commit.return_value = None
        tracker = DeploymentLifecycleTracker(
            source_control,
            monitoring,
            config=TrackerConfig(
                detection_interval_seconds=3600, monitoring_interval_seconds=0.01
            ),
        )
        deployment = tracker.register_deployment(_commit())
        await tracker.start()
        try:
            for _ in range(100):
                if monitoring.get_deployment_metrics.await_count:
                    break
                await asyncio.sleep(0.01)
        finally:
            await asyncio.wait_for(tracker.stop(), timeout=1)

        assert monitoring.get_deployment_metrics.await_count >= 1
        assert tracker.get_deployment(deployment.id).metrics == HEALTHY

    @pytest.mark.asyncio
    async def test_restart_resumes_monitoring_of_active_deployments(
        self, source_control, monitoring
    ):
        tracker = DeploymentLifecycleTracker(
            source_control,
            monitoring,
            config=TrackerConfig(
                services=["api"],
                detection_interval_seconds=0.01,
                monitoring_interval_seconds=0.01,
            ),
        )
        await tracker.start()
        for _ in range(100):
            if monitoring.get_deployment_metrics.await_count:
                break
            await asyncio.sleep(0.01)
        await asyncio.wait_for(tracker.stop(), timeout=1)

        polls_before_restart = monitoring.get_deployment_metrics.await_count
        assert polls_before_restart >= 1
        deployment = tracker.list_active_deployments()[0]
        monitoring.query_alerts.return_value = [
            Alert(
                id="alert-7",
                name="ApiDown",
                severity=AlertSeverity.CRITICAL,
                services=["api"],
                timestamp=deployment.created_at,
            )
        ]

        await tracker.start()
        try:
            for _ in range(100):
                if deployment.status == DeploymentStatus.FAILED:
                    break
                await asyncio.sleep(0.01)
        finally:
            await asyncio.wait_for(tracker.stop(), timeout=1)

        assert monitoring.get_deployment_metrics.await_count > polls_before_restart
        assert deployment.status == DeploymentStatus.FAILED
        assert tracker.list_active_deployments() == []
        assert deployment.incident_id is not None

    @pytest.mark.asyncio
    async def test_stop_waits_for_async_subscribers(self, source_control, monitoring):
        broadcaster = Broadcaster()
        delivered: list[str] = []

        async def push(envelope: EventEnvelope) -> None:
            await asyncio.sleep(0.05)
            delivered.append(envelope.event_type)

        broadcaster.subscribe(push)
        tracker = DeploymentLifecycleTracker(
            source_control,
            monitoring,
            sink=broadcaster,
            config=TrackerConfig(
                detection_interval_seconds=3600, monitoring_interval_seconds=3600
            ),
        )
        await tracker.start()
        for _ in range(100):
            if tracker.list_active_deployments():
                break
            await asyncio.sleep(0.01)
        await asyncio.wait_for(tracker.stop(), timeout=1)

        assert NEW_DEPLOYMENT in delivered
