"""Cron endpoints.

Triggered by the scheduler with ``Authorization: Bearer <CRON_SECRET>``:
- POST /cron/finalize-expired-queue
- POST /cron/confirm-scheduled
- POST /cron/retry-conversions
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from ordercore.api.middleware import extract_bearer, get_request_id
from ordercore.api.schemas import BatchResultSchema, CronResponse, ErrorResponse
from ordercore.application.sweeper_service import (
    SweeperService,
    SweepSummary,
    get_sweeper_service,
)
from ordercore.infrastructure.config import settings

logger = structlog.get_logger()

router = APIRouter(prefix="/cron", tags=["Cron"])


# ============================================================================
# Dependencies
# ============================================================================


def verify_cron_secret(authorization: str | None = Header(default=None)) -> None:
    """Reject requests without the cron bearer secret."""
    if extract_bearer(authorization) != settings.cron_secret:
        logger.warning("Unauthorized cron request")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error_code": "UNAUTHORIZED", "message": "Invalid cron secret"},
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_service(request: Request) -> SweeperService:
    """Get sweeper service with request ID."""
    return get_sweeper_service(request_id=get_request_id(request))


def cron_response(summary: SweepSummary, label: str) -> CronResponse:
    return CronResponse(
        success=True,
        message=(
            f"Processed {summary.total} {label}: "
            f"{summary.success} succeeded, {summary.failed} failed"
        ),
        results=BatchResultSchema(**summary.to_dict()),
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "/finalize-expired-queue",
    response_model=CronResponse,
    responses={401: {"model": ErrorResponse}},
    dependencies=[Depends(verify_cron_secret)],
    summary="Finalize expired queue orders",
)
async def finalize_expired_queue(
    service: Annotated[SweeperService, Depends(get_service)],
) -> CronResponse:
    summary = await service.finalize_expired_queue()
    return cron_response(summary, "queued orders")


@router.post(
    "/confirm-scheduled",
    response_model=CronResponse,
    responses={401: {"model": ErrorResponse}},
    dependencies=[Depends(verify_cron_secret)],
    summary="Confirm due scheduled orders",
)
async def confirm_scheduled(
    service: Annotated[SweeperService, Depends(get_service)],
) -> CronResponse:
    summary = await service.confirm_scheduled()
    return cron_response(summary, "scheduled orders")


@router.post(
    "/retry-conversions",
    response_model=CronResponse,
    responses={401: {"model": ErrorResponse}},
    dependencies=[Depends(verify_cron_secret)],
    summary="Redeliver queued purchase events",
)
async def retry_conversions(
    service: Annotated[SweeperService, Depends(get_service)],
) -> CronResponse:
    summary = await service.retry_conversions()
    return cron_response(summary, "purchase events")
