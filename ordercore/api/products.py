"""Product testing-order endpoints.

- POST /products/{sku}/testing-orders/cancel - cancel all testing orders
- POST /products/{sku}/testing-orders/promote - promote all testing orders
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from ordercore.api.middleware import require_organization
from ordercore.api.orders import get_engine
from ordercore.api.schemas import BatchResultSchema, BulkOperationResponse, ErrorResponse
from ordercore.application.transition_engine import BulkResult, TransitionEngine

router = APIRouter(prefix="/products", tags=["Products"])


def bulk_response(action: str, result: BulkResult) -> BulkOperationResponse:
    return BulkOperationResponse(
        success=result.failed == 0,
        message=f"{result.success} of {result.total} testing orders {action}",
        results=BatchResultSchema(
            total=result.total,
            success=result.success,
            failed=result.failed,
            errors=result.errors,
        ),
    )


@router.post(
    "/{product_sku}/testing-orders/cancel",
    response_model=BulkOperationResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Cancel testing orders",
    description="Cancel every testing order of a product. Helpship is not involved.",
)
async def cancel_testing_orders(
    product_sku: str,
    organization_id: Annotated[str, Depends(require_organization)],
    engine: Annotated[TransitionEngine, Depends(get_engine)],
) -> BulkOperationResponse:
    result = await engine.cancel_testing_orders(organization_id, product_sku)
    return bulk_response("cancelled", result)


@router.post(
    "/{product_sku}/testing-orders/promote",
    response_model=BulkOperationResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Promote testing orders",
    description="Promote every testing order of a product and sync them to Helpship.",
)
async def promote_testing_orders(
    product_sku: str,
    organization_id: Annotated[str, Depends(require_organization)],
    engine: Annotated[TransitionEngine, Depends(get_engine)],
) -> BulkOperationResponse:
    result = await engine.promote_testing_orders(organization_id, product_sku)
    return bulk_response("promoted", result)
