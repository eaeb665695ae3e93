"""Recommendation generator for forensics reports and failing deployments."""

from __future__ import annotations

from collections.abc import Sequence

from deploylens.changes.risk_scorer import (
    CONFIGURATION_CHANGES,
    DATABASE_CHANGES,
    OFF_HOURS,
)
from deploylens.models.base import (
    Anomaly,
    AnomalyType,
    CommitAnalysis,
    Deployment,
    DeploymentStatus,
    ImpactAnalysis,
    Priority,
    Recommendation,
)

COORDINATION_AUTHOR_THRESHOLD = 3

# Forensics pattern label -> (priority, category, message)
_PATTERN_RECOMMENDATIONS: list[tuple[str, Priority, str, str]] = [
    (
        CONFIGURATION_CHANGES,
        Priority.MEDIUM,
        "config",
        "Configuration changes detected - verify environment variables and config files",
    ),
    (
        DATABASE_CHANGES,
        Priority.HIGH,
        "database",
        "Database changes detected - check for migration issues and data integrity",
    ),
    (
        OFF_HOURS,
        Priority.MEDIUM,
        "process",
        "Off-hours deployments found - review deployment approval processes",
    ),
]

# Live anomaly type -> (priority, category, message)
_ANOMALY_RECOMMENDATIONS: dict[AnomalyType, tuple[Priority, str, str]] = {
    AnomalyType.ERROR_RATE_SPIKE: (
        Priority.HIGH,
        "investigate",
        "Check application logs for error details",
    ),
    AnomalyType.MEMORY_SPIKE: (
        Priority.HIGH,
        "investigate",
        "Check for memory leaks or excessive resource usage",
    ),
    AnomalyType.RESPONSE_TIME_DEGRADATION: (
        Priority.MEDIUM,
        "scale",
        "Consider scaling up resources or optimizing queries",
    ),
}


class RecommendationGenerator:
    """Deterministic mapping from detected conditions to prioritized actions."""

    def for_forensics(
        self,
        suspicious_commits: Sequence[CommitAnalysis],
        impact: ImpactAnalysis,
    ) -> list[Recommendation]:
        """Recommendations for a forensics run, seeded by the top-ranked commit."""
        if not suspicious_commits:
            return [
                Recommendation(
                    priority=Priority.LOW,
                    category="analysis",
                    message=(
                        "No suspicious commits found in the specified timeframe. "
                        "Consider expanding the search window or checking for "
                        "infrastructure changes outside version control."
                    ),
                )
            ]

        top = suspicious_commits[0]
        recommendations = [
            Recommendation(
                priority=Priority.HIGH,
                category="investigation",
                message=(
                    f"Start investigation with commit {top.short_hash} ({top.message}) "
                    f"- highest risk score: {top.risk_score:.2f}"
                ),
            )
        ]

        if impact.high_risk_commits > 0:
            recommendations.append(
                Recommendation(
                    priority=Priority.HIGH,
                    category="rollback",
                    message=(
                        f"Consider rolling back {impact.high_risk_commits} high-risk "
                        "commit(s) if safe to do so"
                    ),
                )
            )

        for label, priority, category, message in _PATTERN_RECOMMENDATIONS:
            if impact.common_patterns.get(label):
                recommendations.append(
                    Recommendation(priority=priority, category=category, message=message)
                )

        if impact.authors_involved > COORDINATION_AUTHOR_THRESHOLD:
            recommendations.append(
                Recommendation(
                    priority=Priority.LOW,
                    category="coordination",
                    message=(
                        f"Multiple developers ({impact.authors_involved}) involved "
                        "- check for coordination issues"
                    ),
                )
            )
        return recommendations

    def for_deployment(
        self,
        deployment: Deployment,
        anomalies: Sequence[Anomaly],
    ) -> list[Recommendation]:
        """Recommendations for a live deployment.

        A failed deployment always leads with a rollback; anomaly-specific
        advice follows in anomaly order.
        """
        recommendations: list[Recommendation] = []
        if deployment.status == DeploymentStatus.FAILED:
            recommendations.append(
                Recommendation(
                    priority=Priority.HIGH,
                    category="rollback",
                    message=(
                        "Roll back to previous deployment before "
                        f"{deployment.commit.short_hash}"
                    ),
                )
            )
        for anomaly in anomalies:
            mapped = _ANOMALY_RECOMMENDATIONS.get(anomaly.type)
            if mapped is None:
                continue
            priority, category, message = mapped
            recommendations.append(
                Recommendation(priority=priority, category=category, message=message)
            )
        return recommendations

    def describe_incident(
        self,
        deployment: Deployment,
        anomalies: Sequence[Anomaly],
    ) -> str:
        lines = [
            f"Deployment {deployment.id} failed with critical issues.",
            "",
            f"Commit: {deployment.commit.hash}",
            f"Author: {deployment.commit.author}",
            f"Message: {deployment.commit.message}",
            "",
            "Anomalies detected:",
        ]
        lines.extend(f"- {a.message} ({a.severity.value})" for a in anomalies)
        return "\n".join(lines)
