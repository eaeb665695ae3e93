"""FastAPI dependencies resolving the engines stored on ``app.state``."""

from fastapi import Request

from deploylens.changes.deployment_tracker import DeploymentLifecycleTracker
from deploylens.incidents.forensics import IncidentForensicsEngine


def get_forensics_engine(request: Request) -> IncidentForensicsEngine:
    return request.app.state.forensics  # type: ignore[no-any-return]


def get_tracker(request: Request) -> DeploymentLifecycleTracker:
    return request.app.state.tracker  # type: ignore[no-any-return]
