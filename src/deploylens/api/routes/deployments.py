"""Deployment tracking and incident endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from deploylens.api.dependencies import get_tracker
from deploylens.changes.deployment_tracker import DeploymentLifecycleTracker
from deploylens.models.base import Deployment, Incident

router = APIRouter()


@router.get("/deployments")
async def list_active_deployments(
    tracker: DeploymentLifecycleTracker = Depends(get_tracker),
) -> dict[str, Any]:
    deployments = tracker.list_active_deployments()
    return {
        "deployments": [d.model_dump(mode="json") for d in deployments],
        "total": len(deployments),
    }


@router.get("/deployments/history")
async def list_deployment_history(
    limit: int = Query(default=50, ge=1, le=500),
    tracker: DeploymentLifecycleTracker = Depends(get_tracker),
) -> dict[str, Any]:
    deployments = tracker.list_history(limit)
    return {
        "deployments": [d.model_dump(mode="json") for d in deployments],
        "total": len(deployments),
    }


@router.get("/deployments/{deployment_id}", response_model=Deployment)
async def get_deployment(
    deployment_id: str,
    tracker: DeploymentLifecycleTracker = Depends(get_tracker),
) -> Deployment:
    return tracker.get_deployment(deployment_id)


@router.get("/incidents")
async def list_incidents(
    tracker: DeploymentLifecycleTracker = Depends(get_tracker),
) -> dict[str, Any]:
    incidents = tracker.list_incidents()
    return {
        "incidents": [i.model_dump(mode="json") for i in incidents],
        "total": len(incidents),
    }


@router.get("/incidents/{incident_id}", response_model=Incident)
async def get_incident(
    incident_id: str,
    tracker: DeploymentLifecycleTracker = Depends(get_tracker),
) -> Incident:
    return tracker.get_incident(incident_id)
