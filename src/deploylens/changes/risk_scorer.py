"""Commit Risk Scorer: heuristic suspiciousness score for a single commit.

Every heuristic is an entry in a rule table. A triggered rule adds its
weight to the score and records its label as a factor. The score is
clamped to [0, 1]; the factor list is not affected by the clamp.

Default rules:
  - +0.2  commit made on a weekend or outside 09:00-17:59
  - +0.3  more than 500 changed lines (else +0.1 above 100)
  - +0.2  more than 10 changed files (else +0.1 above 5)
  - +0.3  any file in a high-risk category, applied once per commit
  - +0.4  any file matching a caller-supplied affected-file hint
  - +0.2  urgent/hotfix vocabulary in the message
  - +0.1  short generic message ("fix typo", "update")
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from datetime import datetime

import structlog
from pydantic import BaseModel, ConfigDict

from deploylens.models.base import Commit, RiskAssessment, RiskLevel

logger = structlog.get_logger()


# --- Factor labels ---

OFF_HOURS = "Off-hours deployment"
LARGE_CHANGES = "Large code changes"
MANY_FILES = "Many files modified"
AFFECTED_FILES = "Modified affected files"
URGENT_COMMIT = "Urgent/fix commit"
VAGUE_MESSAGE = "Vague commit message"
CONFIGURATION_CHANGES = "Configuration changes"
DATABASE_CHANGES = "Database changes"
SECURITY_CHANGES = "Security changes"
INFRASTRUCTURE_CHANGES = "Infrastructure changes"
DEPENDENCY_CHANGES = "Dependency changes"


# --- Rule models ---


class SizeTier(BaseModel):
    """Adds ``weight`` when a measured size is strictly above ``threshold``."""

    model_config = ConfigDict(frozen=True)

    threshold: int
    weight: float


class FileCategory(BaseModel):
    """A high-risk path category, matched case-insensitively against each path."""

    model_config = ConfigDict(frozen=True)

    label: str
    pattern: re.Pattern[str]


class MessageRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    pattern: re.Pattern[str]
    weight: float


# Tiers are ordered highest threshold first; only the first match applies.
DEFAULT_LINE_TIERS: tuple[SizeTier, ...] = (
    SizeTier(threshold=500, weight=0.3),
    SizeTier(threshold=100, weight=0.1),
)
DEFAULT_FILE_TIERS: tuple[SizeTier, ...] = (
    SizeTier(threshold=10, weight=0.2),
    SizeTier(threshold=5, weight=0.1),
)

DEFAULT_FILE_CATEGORIES: tuple[FileCategory, ...] = (
    FileCategory(
        label=CONFIGURATION_CHANGES,
        pattern=re.compile(r"config|env|secret|key|password", re.IGNORECASE),
    ),
    FileCategory(
        label=DATABASE_CHANGES,
        pattern=re.compile(r"database|migration|schema", re.IGNORECASE),
    ),
    FileCategory(
        label=SECURITY_CHANGES,
        pattern=re.compile(r"auth|security|login", re.IGNORECASE),
    ),
    FileCategory(
        label=INFRASTRUCTURE_CHANGES,
        pattern=re.compile(r"server|deploy|production", re.IGNORECASE),
    ),
    FileCategory(
        label=DEPENDENCY_CHANGES,
        pattern=re.compile(r"package\.json|requirements|Gemfile|pom\.xml", re.IGNORECASE),
    ),
)

DEFAULT_MESSAGE_RULES: tuple[MessageRule, ...] = (
    MessageRule(
        label=URGENT_COMMIT,
        pattern=re.compile(r"urgent|hotfix|critical|emergency|fix|bug", re.IGNORECASE),
        weight=0.2,
    ),
    MessageRule(
        label=VAGUE_MESSAGE,
        pattern=re.compile(r"^(fix|update|change|modify).{0,10}$", re.IGNORECASE),
        weight=0.1,
    ),
)

OFF_HOURS_WEIGHT = 0.2
CATEGORY_WEIGHT = 0.3
AFFECTED_FILES_WEIGHT = 0.4


def risk_level_from_score(score: float) -> RiskLevel:
    """Map a 0-1 score to a risk level."""
    if score >= 0.9:
        return RiskLevel.CRITICAL
    if score >= 0.7:
        return RiskLevel.HIGH
    if score >= 0.4:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def _first_tier(value: int, tiers: Sequence[SizeTier]) -> SizeTier | None:
    for tier in tiers:
        if value > tier.threshold:
            return tier
    return None


# --- Scorer ---


class CommitRiskScorer:
    """Scores commits against a declarative rule table.

    Scoring is pure: the same commit and hints always yield the same
    assessment, and nothing is recorded between calls.
    """

    def __init__(
        self,
        *,
        line_tiers: Sequence[SizeTier] = DEFAULT_LINE_TIERS,
        file_tiers: Sequence[SizeTier] = DEFAULT_FILE_TIERS,
        file_categories: Sequence[FileCategory] = DEFAULT_FILE_CATEGORIES,
        message_rules: Sequence[MessageRule] = DEFAULT_MESSAGE_RULES,
        business_hours: tuple[int, int] = (9, 17),
    ) -> None:
        self._line_tiers = tuple(line_tiers)
        self._file_tiers = tuple(file_tiers)
        self._file_categories = tuple(file_categories)
        self._message_rules = tuple(message_rules)
        self._business_hours = business_hours

    def score(
        self,
        commit: Commit,
        affected_files: Iterable[str] | None = None,
    ) -> RiskAssessment:
        """Assess one commit, optionally boosting commits that touch ``affected_files``."""
        if commit.timestamp is None:
            logger.debug("commit_risk_scorer.missing_timestamp", commit=commit.hash)
            return RiskAssessment()

        score = 0.0
        factors: list[str] = []

        def hit(weight: float, label: str) -> None:
            nonlocal score
            score += weight
            if label not in factors:
                factors.append(label)

        if self._is_off_hours(commit.timestamp):
            hit(OFF_HOURS_WEIGHT, OFF_HOURS)

        line_tier = _first_tier(commit.lines_changed, self._line_tiers)
        if line_tier is not None:
            hit(line_tier.weight, LARGE_CHANGES)

        file_tier = _first_tier(len(commit.files), self._file_tiers)
        if file_tier is not None:
            hit(file_tier.weight, MANY_FILES)

        categories = self.matched_categories(commit.files)
        if categories:
            score += CATEGORY_WEIGHT
            factors.extend(label for label in categories if label not in factors)

        hints = [h for h in (affected_files or []) if h]
        if hints and any(hint in path for path in commit.files for hint in hints):
            hit(AFFECTED_FILES_WEIGHT, AFFECTED_FILES)

        for rule in self._message_rules:
            if rule.pattern.search(commit.message):
                hit(rule.weight, rule.label)

        final = min(round(score, 2), 1.0)
        return RiskAssessment(score=final, factors=factors, level=risk_level_from_score(final))

    def score_deployment(self, commit: Commit) -> RiskAssessment:
        """Risk of deploying ``commit``: same weighting, no affected-file hints."""
        return self.score(commit)

    def matched_categories(self, files: Iterable[str]) -> list[str]:
        """Labels of every high-risk category matched by at least one path."""
        paths = list(files)
        return [
            category.label
            for category in self._file_categories
            if any(category.pattern.search(path) for path in paths)
        ]

    def _is_off_hours(self, timestamp: datetime) -> bool:
        start, end = self._business_hours
        hour = timestamp.hour
        return timestamp.weekday() >= 5 or hour < start or hour > end
