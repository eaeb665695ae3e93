"""Core data models for DeployLens."""

from deploylens.models.base import (
    Alert,
    AlertSeverity,
    Anomaly,
    AnomalySeverity,
    AnomalyType,
    Commit,
    CommitAnalysis,
    Correlation,
    Deployment,
    DeploymentStatus,
    DiffSummary,
    ForensicsReport,
    ImpactAnalysis,
    Incident,
    MetricsSnapshot,
    Priority,
    Recommendation,
    RiskAssessment,
    RiskLevel,
    TimeRange,
)

__all__ = [
    "Alert",
    "AlertSeverity",
    "Anomaly",
    "AnomalySeverity",
    "AnomalyType",
    "Commit",
    "CommitAnalysis",
    "Correlation",
    "Deployment",
    "DeploymentStatus",
    "DiffSummary",
    "ForensicsReport",
    "ImpactAnalysis",
    "Incident",
    "MetricsSnapshot",
    "Priority",
    "Recommendation",
    "RiskAssessment",
    "RiskLevel",
    "TimeRange",
]
