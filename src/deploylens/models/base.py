"""Base data models shared across all DeployLens components."""

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _generate_deployment_id() -> str:
    return f"dep-{uuid.uuid4().hex[:12]}"


def _generate_incident_id() -> str:
    return f"inc-{uuid.uuid4().hex[:12]}"


def _now() -> datetime:
    return datetime.now(UTC)


def _assume_utc(value: datetime | None) -> datetime | None:
    """Naive timestamps from collaborators are taken to be UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class RiskLevel(StrEnum):
    """Risk classification derived from a risk score."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class DeploymentStatus(StrEnum):
    """Lifecycle state of a tracked deployment."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DEGRADED = "degraded"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({DeploymentStatus.COMPLETED, DeploymentStatus.FAILED})


class AlertSeverity(StrEnum):
    INFO = "info"
    WARNING = "warning"
    HIGH = "high"
    CRITICAL = "critical"


class AnomalyType(StrEnum):
    ERROR_RATE_SPIKE = "error_rate_spike"
    RESPONSE_TIME_DEGRADATION = "response_time_degradation"
    CPU_SPIKE = "cpu_spike"
    MEMORY_SPIKE = "memory_spike"
    CRITICAL_ALERTS = "critical_alerts"


class AnomalySeverity(StrEnum):
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Priority(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TimeRange(BaseModel):
    """Time range for queries."""

    start: datetime
    end: datetime


# --- Source control ---


class DiffSummary(BaseModel):
    """Per-commit diff statistics returned by a source-control connector."""

    files: list[str] = Field(default_factory=list)
    insertions: int = 0
    deletions: int = 0


class Commit(BaseModel):
    """A single commit with its diff statistics."""

    model_config = ConfigDict(frozen=True)

    hash: str
    message: str = ""
    author: str = ""
    timestamp: datetime | None = None
    files: list[str] = Field(default_factory=list)
    insertions: int = 0
    deletions: int = 0

    @field_validator("timestamp")
    @classmethod
    def timestamp_as_utc(cls, value: datetime | None) -> datetime | None:
        return _assume_utc(value)

    @property
    def short_hash(self) -> str:
        return self.hash[:8]

    @property
    def lines_changed(self) -> int:
        return self.insertions + self.deletions

    def with_diff(self, diff: DiffSummary) -> "Commit":
        """Return a copy carrying the given diff statistics."""
        return self.model_copy(
            update={
                "files": list(diff.files),
                "insertions": diff.insertions,
                "deletions": diff.deletions,
            }
        )


class RiskAssessment(BaseModel):
    """Bounded risk score plus the labels of every triggered heuristic."""

    model_config = ConfigDict(frozen=True)

    score: float = Field(default=0.0, ge=0.0, le=1.0)
    factors: list[str] = Field(default_factory=list)
    level: RiskLevel = RiskLevel.LOW


# --- Monitoring ---


class MetricsSnapshot(BaseModel):
    """Latest health metrics collected for a deployment."""

    error_rate: float = 0.0
    response_time_ms: float = 0.0
    cpu_percent: float = 0.0
    memory_percent: float = 0.0
    collected_at: datetime = Field(default_factory=_now)


class Alert(BaseModel):
    """A monitoring alert, optionally carrying precomputed correlation scores."""

    id: str
    name: str = ""
    severity: AlertSeverity = AlertSeverity.WARNING
    services: list[str] = Field(default_factory=list)
    timestamp: datetime
    time_proximity: float | None = Field(default=None, ge=0.0, le=1.0)
    service_match: float | None = Field(default=None, ge=0.0, le=1.0)

    @field_validator("timestamp")
    @classmethod
    def timestamp_as_utc(cls, value: datetime | None) -> datetime | None:
        return _assume_utc(value)


class Anomaly(BaseModel):
    """A metric deviation beyond a fixed threshold."""

    type: AnomalyType
    severity: AnomalySeverity
    value: float
    threshold: float | None = None
    message: str
    count: int | None = None
    detected_at: datetime = Field(default_factory=_now)


class Correlation(BaseModel):
    """Association between a deployment and the alerts raised after it."""

    deployment_id: str
    alerts: list[Alert] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    timestamp: datetime = Field(default_factory=_now)


# --- Deployments & incidents ---


class Recommendation(BaseModel):
    priority: Priority
    category: str
    message: str


class Deployment(BaseModel):
    """A tracked deployment of one commit, monitored until a terminal state."""

    id: str = Field(default_factory=_generate_deployment_id)
    created_at: datetime = Field(default_factory=_now)
    commit: Commit
    environment: str = "development"
    services: list[str] = Field(default_factory=list)
    status: DeploymentStatus = DeploymentStatus.IN_PROGRESS
    metrics: MetricsSnapshot | None = None
    risk: RiskAssessment = Field(default_factory=RiskAssessment)
    anomalies: list[Anomaly] = Field(default_factory=list)
    correlation: Correlation | None = None
    completed_at: datetime | None = None
    incident_id: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class Incident(BaseModel):
    """Record created when a deployment fails with critical anomalies."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_generate_incident_id)
    timestamp: datetime = Field(default_factory=_now)
    deployment_id: str | None = None
    commit_hash: str | None = None
    severity: AnomalySeverity = AnomalySeverity.CRITICAL
    title: str
    description: str = ""
    anomalies: list[Anomaly] = Field(default_factory=list)
    recommendations: list[Recommendation] = Field(default_factory=list)


# --- Forensics ---


class CommitAnalysis(BaseModel):
    """A scored commit as it appears in a forensics report."""

    hash: str
    short_hash: str
    message: str
    author: str
    timestamp: datetime | None = None
    files_changed: list[str] = Field(default_factory=list)
    insertions: int = 0
    deletions: int = 0
    risk_score: float = Field(default=0.0, ge=0.0, le=1.0)
    risk_factors: list[str] = Field(default_factory=list)

    @classmethod
    def from_commit(cls, commit: Commit, assessment: RiskAssessment) -> "CommitAnalysis":
        return cls(
            hash=commit.hash,
            short_hash=commit.short_hash,
            message=commit.message,
            author=commit.author,
            timestamp=commit.timestamp,
            files_changed=list(commit.files),
            insertions=commit.insertions,
            deletions=commit.deletions,
            risk_score=assessment.score,
            risk_factors=list(assessment.factors),
        )


class ImpactAnalysis(BaseModel):
    """Aggregate view over the suspicious commits of a forensics run."""

    total_suspicious_commits: int = 0
    high_risk_commits: int = 0
    authors_involved: int = 0
    files_impacted: list[str] = Field(default_factory=list)
    common_patterns: dict[str, int] = Field(default_factory=dict)


class ForensicsReport(BaseModel):
    incident_time: datetime
    lookback_period: TimeRange
    commits_analyzed: int = 0
    suspicious_commits: list[CommitAnalysis] = Field(default_factory=list)
    impact_analysis: ImpactAnalysis = Field(default_factory=ImpactAnalysis)
    recommendations: list[Recommendation] = Field(default_factory=list)
