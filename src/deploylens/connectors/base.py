"""Source-control connector interface.

DeployLens never talks to a version-control system directly. A connector
implementing this interface supplies commit metadata and diff statistics
to the forensics engine and the deployment tracker.
"""

from abc import ABC, abstractmethod

from deploylens.models.base import Commit, DiffSummary, TimeRange


class SourceControlConnector(ABC):
    """Abstract base class for source-control connectors."""

    provider: str  # git, github, gitlab, ...

    @abstractmethod
    async def list_commits(self, time_range: TimeRange) -> list[Commit]:
        """List commits whose timestamp falls within the range.

        Commits are returned oldest first. Diff fields may be left empty;
        callers fetch them with :meth:`get_diff_summary`.
        """

    @abstractmethod
    async def get_diff_summary(self, commit_hash: str) -> DiffSummary:
        """Changed paths and insertion/deletion counts for one commit."""

    @abstractmethod
    async def get_head_commit(self) -> str | None:
        """Hash of the current head commit, or ``None`` for an empty history."""

    @abstractmethod
    async def get_commit(self, commit_hash: str) -> Commit:
        """Full commit metadata including diff statistics."""
