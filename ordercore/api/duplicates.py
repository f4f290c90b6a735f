"""Duplicate order check endpoint.

- POST /orders/check-duplicates - recent orders of the same customer
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from ordercore.api.errors import to_http_exception
from ordercore.api.middleware import get_request_id, require_organization
from ordercore.api.orders import order_to_summary
from ordercore.api.schemas import DuplicateCheckRequest, DuplicateCheckResponse, ErrorResponse
from ordercore.application.duplicate_service import DuplicateService, get_duplicate_service
from ordercore.domain.exceptions import DomainError

router = APIRouter(prefix="/orders", tags=["Orders"])


def get_service(request: Request) -> DuplicateService:
    """Get duplicate service with request ID."""
    return get_duplicate_service(request_id=get_request_id(request))


@router.post(
    "/check-duplicates",
    response_model=DuplicateCheckResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
    summary="Check duplicate orders",
    description="List the customer's other orders within the store's duplicate window.",
)
async def check_duplicates(
    body: DuplicateCheckRequest,
    organization_id: Annotated[str, Depends(require_organization)],
    service: Annotated[DuplicateService, Depends(get_service)],
) -> DuplicateCheckResponse:
    try:
        result = await service.check(
            organization_id,
            phone=body.phone,
            customer_id=body.customer_id,
            exclude_order_id=body.exclude_order_id,
            store_id=body.store_id,
        )
    except DomainError as e:
        raise to_http_exception(e) from e

    return DuplicateCheckResponse(
        has_duplicates=result.has_duplicates,
        duplicate_count=result.duplicate_count,
        duplicate_order_days=result.duplicate_order_days,
        orders=[order_to_summary(order) for order in result.orders],
    )
