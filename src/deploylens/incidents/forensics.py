"""Incident forensics: rank the commits most likely to have caused an incident.

Pulls every commit in the lookback window from the source-control
connector, scores each one, keeps those above the suspicious threshold and
aggregates them into an impact analysis with recommendations.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from deploylens.api.exceptions import SourceControlError, ValidationError, error_context
from deploylens.changes.risk_scorer import CommitRiskScorer
from deploylens.config.settings import Settings
from deploylens.connectors.base import SourceControlConnector
from deploylens.incidents.recommendations import RecommendationGenerator
from deploylens.models.base import (
    Commit,
    CommitAnalysis,
    ForensicsReport,
    ImpactAnalysis,
    RiskAssessment,
    TimeRange,
)

logger = structlog.get_logger()


class IncidentForensicsEngine:
    """Scores historical commits around an incident and ranks the suspicious ones."""

    def __init__(
        self,
        source_control: SourceControlConnector,
        *,
        scorer: CommitRiskScorer | None = None,
        recommender: RecommendationGenerator | None = None,
        suspicious_threshold: float = 0.3,
        high_risk_threshold: float = 0.7,
        default_lookback_hours: float = 24.0,
    ) -> None:
        self._source_control = source_control
        self._scorer = scorer or CommitRiskScorer()
        self._recommender = recommender or RecommendationGenerator()
        self.suspicious_threshold = suspicious_threshold
        self.high_risk_threshold = high_risk_threshold
        self.default_lookback_hours = default_lookback_hours

    @classmethod
    def from_settings(
        cls,
        source_control: SourceControlConnector,
        settings: Settings,
        **kwargs: Any,
    ) -> IncidentForensicsEngine:
        return cls(
            source_control,
            suspicious_threshold=settings.suspicious_threshold,
            high_risk_threshold=settings.high_risk_threshold,
            default_lookback_hours=settings.default_lookback_hours,
            **kwargs,
        )

    async def analyze_incident(
        self,
        incident_time: datetime,
        lookback_hours: float | None = None,
        affected_files: Iterable[str] | None = None,
    ) -> ForensicsReport:
        if lookback_hours is None:
            lookback_hours = self.default_lookback_hours
        if lookback_hours <= 0:
            raise ValidationError(
                "lookback_hours must be positive",
                extra={"lookback_hours": lookback_hours},
            )
        if incident_time.tzinfo is None:
            incident_time = incident_time.replace(tzinfo=UTC)
        hints = [f for f in (affected_files or []) if f]
        window = TimeRange(
            start=incident_time - timedelta(hours=lookback_hours),
            end=incident_time,
        )
        logger.info(
            "forensics.analysis_started",
            incident_time=incident_time.isoformat(),
            lookback_hours=lookback_hours,
            affected_files=len(hints),
        )

        with error_context(SourceControlError, detail="failed to list commits"):
            commits = await self._source_control.list_commits(window)

        suspicious: list[CommitAnalysis] = []
        for commit in commits:
            analysis = await self.analyze_commit(commit, hints)
            if analysis.risk_score > self.suspicious_threshold:
                suspicious.append(analysis)

        # list.sort is stable, so equal scores keep chronological order.
        suspicious.sort(key=lambda c: c.risk_score, reverse=True)

        impact = self.build_impact_analysis(suspicious)
        recommendations = self._recommender.for_forensics(suspicious, impact)

        logger.info(
            "forensics.analysis_completed",
            commits_analyzed=len(commits),
            suspicious=impact.total_suspicious_commits,
            high_risk=impact.high_risk_commits,
        )
        return ForensicsReport(
            incident_time=incident_time,
            lookback_period=window,
            commits_analyzed=len(commits),
            suspicious_commits=suspicious,
            impact_analysis=impact,
            recommendations=recommendations,
        )

    async def analyze_commit(
        self,
        commit: Commit,
        affected_files: Iterable[str] | None = None,
    ) -> CommitAnalysis:
        """Fetch diff statistics and score one commit.

        A failed diff fetch yields a neutral assessment for this commit only.
        """
        try:
            diff = await self._source_control.get_diff_summary(commit.hash)
        except Exception as e:
            logger.warning(
                "forensics.commit_analysis_failed",
                commit=commit.hash,
                error=str(e),
            )
            return CommitAnalysis.from_commit(commit, RiskAssessment())

        detailed = commit.with_diff(diff)
        assessment = self._scorer.score(detailed, affected_files)
        return CommitAnalysis.from_commit(detailed, assessment)

    def build_impact_analysis(self, suspicious: list[CommitAnalysis]) -> ImpactAnalysis:
        files: set[str] = set()
        patterns: Counter[str] = Counter()
        for commit in suspicious:
            files.update(commit.files_changed)
            patterns.update(commit.risk_factors)
        return ImpactAnalysis(
            total_suspicious_commits=len(suspicious),
            high_risk_commits=sum(
                1 for c in suspicious if c.risk_score > self.high_risk_threshold
            ),
            authors_involved=len({c.author for c in suspicious}),
            files_impacted=sorted(files),
            common_patterns=dict(patterns),
        )
