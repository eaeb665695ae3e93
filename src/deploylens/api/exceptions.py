"""Structured exception hierarchy following RFC 7807 Problem Details.

All DeployLens domain exceptions extend ``DeployLensError``. The core
engines raise them directly; the FastAPI handler registered in ``app.py``
converts them to ``application/problem+json`` responses.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = structlog.get_logger()


class DeployLensError(Exception):
    """Base exception for all DeployLens domain errors."""

    status_code: int = 500
    error_type: str = "about:blank"
    title: str = "Internal Server Error"

    def __init__(
        self,
        detail: str = "",
        *,
        instance: str = "",
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.detail = detail or self.title
        self.instance = instance
        self.extra = extra or {}
        super().__init__(self.detail)

    def to_problem_detail(self) -> dict[str, Any]:
        """RFC 7807 Problem Details JSON object."""
        body: dict[str, Any] = {
            "type": self.error_type,
            "title": self.title,
            "status": self.status_code,
            "detail": self.detail,
        }
        if self.instance:
            body["instance"] = self.instance
        if self.extra:
            body.update(self.extra)
        return body


class NotFoundError(DeployLensError):
    status_code = 404
    error_type = "urn:deploylens:error:not-found"
    title = "Not Found"


class DeploymentNotFoundError(NotFoundError):
    error_type = "urn:deploylens:error:deployment-not-found"
    title = "Deployment Not Found"

    def __init__(self, deployment_id: str) -> None:
        super().__init__(
            f"Unknown deployment '{deployment_id}'",
            extra={"deployment_id": deployment_id},
        )
        self.deployment_id = deployment_id


class IncidentNotFoundError(NotFoundError):
    error_type = "urn:deploylens:error:incident-not-found"
    title = "Incident Not Found"

    def __init__(self, incident_id: str) -> None:
        super().__init__(
            f"Unknown incident '{incident_id}'",
            extra={"incident_id": incident_id},
        )
        self.incident_id = incident_id


class ValidationError(DeployLensError):
    status_code = 422
    error_type = "urn:deploylens:error:validation"
    title = "Validation Error"


class ExternalServiceError(DeployLensError):
    status_code = 502
    error_type = "urn:deploylens:error:external-service"
    title = "External Service Error"


class SourceControlError(ExternalServiceError):
    error_type = "urn:deploylens:error:source-control"
    title = "Source Control Unavailable"


class MonitoringError(ExternalServiceError):
    error_type = "urn:deploylens:error:monitoring"
    title = "Monitoring Unavailable"


@contextmanager
def error_context(
    error_cls: type[DeployLensError] = DeployLensError,
    detail: str = "",
    **kwargs: Any,
) -> Iterator[None]:
    """Context manager that wraps unexpected exceptions into structured errors.

    ``DeployLensError`` subclasses pass through unchanged. As used by the
    correlation engine::

        with error_context(MonitoringError, detail="alert query failed"):
            alerts = await self._monitoring.query_alerts(time_range, service_list)
    """
    try:
        yield
    except DeployLensError:
        raise
    except Exception as exc:
        msg = detail or str(exc)
        raise error_cls(msg, **kwargs) from exc


def deploylens_exception_handler(_request: Request, exc: DeployLensError) -> JSONResponse:
    """FastAPI exception handler for DeployLensError subclasses."""
    logger.warning(
        "deploylens_error",
        error_type=exc.error_type,
        status=exc.status_code,
        detail=exc.detail,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_problem_detail(),
        media_type="application/problem+json",
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all DeployLens exception handlers on the FastAPI app."""
    app.add_exception_handler(DeployLensError, deploylens_exception_handler)  # type: ignore[arg-type]
