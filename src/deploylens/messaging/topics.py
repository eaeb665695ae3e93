"""Event type constants and the event envelope schema."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

# ── Event types ──────────────────────────────────────────────────────────────

NEW_DEPLOYMENT = "new_deployment"
HIGH_RISK_DEPLOYMENT = "high_risk_deployment"
DEPLOYMENT_UPDATE = "deployment_update"
DEPLOYMENT_ANOMALIES = "deployment_anomalies"
DEPLOYMENT_DEGRADED = "deployment_degraded"
INCIDENT_DETECTED = "incident_detected"

ALL_EVENT_TYPES: list[str] = [
    NEW_DEPLOYMENT,
    HIGH_RISK_DEPLOYMENT,
    DEPLOYMENT_UPDATE,
    DEPLOYMENT_ANOMALIES,
    DEPLOYMENT_DEGRADED,
    INCIDENT_DETECTED,
]


# ── Event envelope ───────────────────────────────────────────────────────────


class EventEnvelope(BaseModel):
    """Canonical wrapper for every event pushed to observers.

    Subscribers always receive a consistent schema regardless of the
    underlying payload.
    """

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: str
    source: str = "deploylens.tracker"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    payload: dict[str, Any] = Field(default_factory=dict)
