"""FastAPI router for workload launch requests.

GET /{workload_name}              start the workload (or report it ready)
GET /{workload_name}?status=true  read-only readiness check

Responses carry {status, serviceUrl}. HTTP status:
    200  ready (or any read-only status check)
    409  starting: another request holds the launch lease
    400  invalid workload name
    500  launch failed (details only in the logs)
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from scalezero.config.settings import get_config
from scalezero.coordination.launch_orchestrator import (
    LaunchOrchestrator,
    LaunchResult,
    LaunchStatus,
)
from scalezero.runtime import build_launch_orchestrator
from scalezero.utils.exceptions import InvalidWorkloadNameError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["launch"])


# =============================================================================
# Response Models
# =============================================================================


class EndpointInfo(BaseModel):
    """One endpoint of the workload pair."""

    role: str
    unit_ref: str = Field(..., alias="unitRef")
    status: str
    health: str
    address: str | None = None

    class Config:
        populate_by_name = True


class LaunchResponse(BaseModel):
    """Launch/status response body."""

    status: LaunchStatus
    service_url: str = Field(..., alias="serviceUrl", description="Public URL of the workload")
    frontend: EndpointInfo | None = None
    backend: EndpointInfo | None = None
    message: str | None = None

    class Config:
        populate_by_name = True


_STATUS_CODES = {
    LaunchStatus.READY: 200,
    LaunchStatus.STARTING: 409,
    LaunchStatus.ERROR: 500,
}


def _respond(result: LaunchResult, status_code: int) -> JSONResponse:
    body = LaunchResponse.model_validate(result.to_dict())
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


# =============================================================================
# Orchestrator Access
# =============================================================================

_orchestrator: LaunchOrchestrator | None = None


def get_orchestrator() -> LaunchOrchestrator:
    """Get the process-wide orchestrator, building it on first use."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_launch_orchestrator(get_config())
    return _orchestrator


def set_orchestrator(orchestrator: LaunchOrchestrator | None) -> None:
    """Install a specific orchestrator (tests, local runs)."""
    global _orchestrator
    _orchestrator = orchestrator


def reset_orchestrator() -> None:
    set_orchestrator(None)


# =============================================================================
# Endpoints
# =============================================================================


@router.get("/{workload_name}", response_model=LaunchResponse)
async def launch_workload(
    workload_name: str,
    status: bool = Query(False, description="Only report readiness, never launch"),
) -> JSONResponse:
    orchestrator = get_orchestrator()

    try:
        if status:
            result = await orchestrator.check_status(workload_name)
            return _respond(result, 200)
        result = await orchestrator.launch(workload_name)
    except InvalidWorkloadNameError as e:
        logger.info(f"Rejected launch request: {e}")
        return _respond(
            LaunchResult(
                status=LaunchStatus.ERROR,
                workload=workload_name,
                service_url=orchestrator.config.service_url(workload_name),
            ),
            400,
        )
    except Exception as e:
        logger.error(f"[{workload_name}] Request failed: {e}", exc_info=True)
        return _respond(
            LaunchResult(
                status=LaunchStatus.ERROR,
                workload=workload_name,
                service_url=orchestrator.config.service_url(workload_name),
            ),
            500,
        )

    return _respond(result, _STATUS_CODES[result.status])
