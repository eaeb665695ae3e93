"""Incident forensics endpoints."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from deploylens.api.dependencies import get_forensics_engine
from deploylens.incidents.forensics import IncidentForensicsEngine
from deploylens.models.base import ForensicsReport

router = APIRouter(prefix="/forensics")


class AnalyzeIncidentRequest(BaseModel):
    """Request body for an incident forensics run."""

    incident_time: datetime
    lookback_hours: float | None = Field(default=None, gt=0)
    affected_files: list[str] = Field(default_factory=list)


@router.post("/analyze", response_model=ForensicsReport)
async def analyze_incident(
    body: AnalyzeIncidentRequest,
    engine: IncidentForensicsEngine = Depends(get_forensics_engine),
) -> ForensicsReport:
    """Rank the commits most likely to have caused an incident."""
    return await engine.analyze_incident(
        body.incident_time,
        lookback_hours=body.lookback_hours,
        affected_files=body.affected_files,
    )
