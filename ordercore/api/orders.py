"""Order API endpoints.

Operator endpoints (API key + X-Organization-ID):
- GET /orders/{id} - order details
- POST /orders/{id}/confirm | schedule | hold | unhold
- POST /orders/{id}/cancel | uncancel | promote | resync
- PUT /orders/{id}/note - edit operator note

Storefront endpoints (public):
- POST /orders - submit a new order
- POST /orders/{id}/finalize - close the post-purchase window
- POST /orders/{id}/postsale-upsell - accept the postsale upsell
- GET /orders/{id}/postsale-offer - thank-you page offer state
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from ordercore.api.errors import to_http_exception
from ordercore.api.middleware import get_operator_name, get_request_id, require_organization
from ordercore.api.schemas import (
    CancelOrderRequest,
    ConfirmOrderRequest,
    ErrorResponse,
    HoldOrderRequest,
    OrderCreateRequest,
    OrderNoteRequest,
    OrderOperationResponse,
    OrderResponse,
    OrderStatusEnum,
    OrderSummarySchema,
    PostsaleOfferResponse,
    PostsaleUpsellRequest,
    PriceSchema,
    ScheduleOrderRequest,
    UpsellLineSchema,
    UpsellSchema,
)
from ordercore.application.transition_engine import (
    OrderIntake,
    TransitionEngine,
    TransitionResult,
    get_transition_engine,
)
from ordercore.application.upsell_service import UpsellService, get_upsell_service
from ordercore.domain.entities import DeliveryPatch, Order, Upsell
from ordercore.domain.exceptions import DomainError
from ordercore.domain.value_objects import Money

router = APIRouter(prefix="/orders", tags=["Orders"])

OPERATION_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


# ============================================================================
# Dependencies
# ============================================================================


def get_engine(request: Request) -> TransitionEngine:
    """Get transition engine with request ID."""
    return get_transition_engine(request_id=get_request_id(request))


def get_upsells(request: Request) -> UpsellService:
    """Get upsell service with request ID."""
    return get_upsell_service(request_id=get_request_id(request))


Organization = Annotated[str, Depends(require_organization)]
Engine = Annotated[TransitionEngine, Depends(get_engine)]


# ============================================================================
# Converters
# ============================================================================


def price(money: Money) -> PriceSchema:
    return PriceSchema(amount=money.amount_cents, currency=money.currency)


def order_to_response(order: Order) -> OrderResponse:
    """Convert Order to OrderResponse."""
    return OrderResponse(
        id=order.id,
        name=order.display_number,
        organization_id=order.organization_id,
        store_id=order.store_id,
        customer_id=order.customer_id,
        offer_code=order.offer_code,
        product_name=order.product_name,
        product_sku=order.product_sku,
        quantity=order.quantity,
        upsells=[
            UpsellLineSchema(
                upsell_id=line.upsell_id,
                title=line.title,
                quantity=line.quantity,
                price=price(line.price),
                type=line.type.value,
                product_sku=line.product_sku,
                product_name=line.product_name,
            )
            for line in order.upsells
        ],
        subtotal=price(order.subtotal),
        shipping_cost=price(order.shipping_cost),
        total=price(order.total),
        full_name=order.full_name,
        phone=order.phone,
        county=order.county,
        city=order.city,
        address=order.address,
        postal_code=order.postal_code,
        status=OrderStatusEnum(order.status.value),
        hold_from_status=order.hold_from_status.value if order.hold_from_status else None,
        cancelled_from_status=(
            order.cancelled_from_status.value if order.cancelled_from_status else None
        ),
        cancelled_note=order.cancelled_note,
        canceller_name=order.canceller_name,
        order_note=order.order_note,
        helpship_order_id=order.helpship_order_id,
        queue_expires_at=order.queue_expires_at,
        scheduled_date=order.scheduled_date,
        from_partial_id=order.from_partial_id,
        promoted_from_testing=order.promoted_from_testing,
        version=order.version,
        created_at=order.created_at,
        updated_at=order.updated_at,
    )


def order_to_summary(order: Order) -> OrderSummarySchema:
    """Convert Order to OrderSummarySchema."""
    return OrderSummarySchema(
        id=order.id,
        name=order.display_number,
        status=OrderStatusEnum(order.status.value),
        product_name=order.product_name,
        total=price(order.total),
        phone=order.phone,
        full_name=order.full_name,
        order_note=order.order_note,
        helpship_order_id=order.helpship_order_id,
        created_at=order.created_at,
    )


def upsell_to_schema(upsell: Upsell) -> UpsellSchema:
    return UpsellSchema(
        id=upsell.id,
        title=upsell.title,
        price=price(upsell.price),
        quantity=upsell.quantity,
        product_name=upsell.product_name,
    )


def result_to_response(result: TransitionResult) -> OrderOperationResponse:
    return OrderOperationResponse(
        success=result.success,
        order=order_to_response(result.order),
        message=result.message,
        already_finalized=result.already_finalized,
        sync_error=result.sync_error,
    )


def to_money(schema: PriceSchema | None) -> Money | None:
    if schema is None:
        return None
    return Money(schema.amount, schema.currency)


# ============================================================================
# Storefront Endpoints
# ============================================================================


@router.post(
    "",
    response_model=OrderOperationResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Submit order",
    description="Create an order from a storefront submission.",
)
async def create_order(
    body: OrderCreateRequest,
    request: Request,
    engine: Engine,
    upsells: Annotated[UpsellService, Depends(get_upsells)],
) -> OrderOperationResponse:
    """Submit a new order.

    The order starts in testing, in the post-purchase queue, or pending
    depending on the request and the store configuration.
    """
    try:
        store = await engine.repos.catalog.get_store(body.store_id)
        organization_id = store.organization_id if store else None
        lines = []
        if body.upsells and organization_id:
            lines = await upsells.resolve_presale(
                organization_id,
                body.store_id,
                [(u.upsell_id, u.quantity) for u in body.upsells],
            )
        result = await engine.create_order(
            OrderIntake(
                store_id=body.store_id,
                product_name=body.product_name,
                product_sku=body.product_sku,
                quantity=body.quantity,
                subtotal=to_money(body.subtotal),
                shipping_cost=to_money(body.shipping_cost) or Money.zero(),
                upsells=lines,
                full_name=body.full_name,
                phone=body.phone,
                county=body.county,
                city=body.city,
                address=body.address,
                postal_code=body.postal_code,
                offer_code=body.offer_code,
                testing=body.testing,
                from_partial_id=body.from_partial_id,
                event_source_url=body.event_source_url,
                client_ip=request.client.host if request.client else None,
                client_user_agent=request.headers.get("user-agent"),
                fbp=body.fbp,
                fbc=body.fbc,
            )
        )
    except DomainError as e:
        raise to_http_exception(e) from e
    return result_to_response(result)


@router.post(
    "/{order_id}/finalize",
    response_model=OrderOperationResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Finalize order",
    description="Close the post-purchase window without an upsell.",
)
async def finalize_order(order_id: str, engine: Engine) -> OrderOperationResponse:
    try:
        result = await engine.finalize(order_id)
    except DomainError as e:
        raise to_http_exception(e) from e
    return result_to_response(result)


@router.post(
    "/{order_id}/postsale-upsell",
    response_model=OrderOperationResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        410: {"model": ErrorResponse},
    },
    summary="Accept postsale upsell",
    description="Add the postsale upsell to a queued order and finalize it.",
)
async def attach_postsale_upsell(
    order_id: str,
    body: PostsaleUpsellRequest,
    upsells: Annotated[UpsellService, Depends(get_upsells)],
) -> OrderOperationResponse:
    try:
        result = await upsells.attach_postsale(order_id, body.upsell_id)
    except DomainError as e:
        raise to_http_exception(e) from e
    return result_to_response(result)


@router.get(
    "/{order_id}/postsale-offer",
    response_model=PostsaleOfferResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get postsale offer",
    description="Whether the thank-you page should show a postsale upsell.",
)
async def get_postsale_offer(
    order_id: str,
    upsells: Annotated[UpsellService, Depends(get_upsells)],
) -> PostsaleOfferResponse:
    try:
        offer = await upsells.get_postsale_offer(order_id)
    except DomainError as e:
        raise to_http_exception(e) from e
    return PostsaleOfferResponse(
        order_id=offer.order.id,
        status=OrderStatusEnum(offer.order.status.value),
        show_offer=offer.show_offer,
        expires_at=offer.expires_at,
        upsells=[upsell_to_schema(u) for u in offer.upsells],
    )


# ============================================================================
# Operator Endpoints
# ============================================================================


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    responses={
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    summary="Get order details",
)
async def get_order(order_id: str, organization_id: Organization, engine: Engine) -> OrderResponse:
    try:
        order = await engine.get_order(order_id, organization_id)
    except DomainError as e:
        raise to_http_exception(e) from e
    return order_to_response(order)


@router.post(
    "/{order_id}/confirm",
    response_model=OrderOperationResponse,
    responses=OPERATION_RESPONSES,
    summary="Confirm order",
    description="Confirm a pending or scheduled order, applying delivery corrections.",
)
async def confirm_order(
    order_id: str,
    organization_id: Organization,
    engine: Engine,
    body: ConfirmOrderRequest | None = None,
) -> OrderOperationResponse:
    patch = None
    if body is not None:
        patch = DeliveryPatch(
            full_name=body.full_name,
            phone=body.phone,
            county=body.county,
            city=body.city,
            address=body.address,
            postal_code=body.postal_code,
            shipping_cost=to_money(body.shipping_cost),
        )
    try:
        result = await engine.confirm(order_id, patch, organization_id=organization_id)
    except DomainError as e:
        raise to_http_exception(e) from e
    return result_to_response(result)


@router.post(
    "/{order_id}/schedule",
    response_model=OrderOperationResponse,
    responses=OPERATION_RESPONSES,
    summary="Schedule order",
    description="Defer confirmation of a pending order to a ship date.",
)
async def schedule_order(
    order_id: str,
    body: ScheduleOrderRequest,
    organization_id: Organization,
    engine: Engine,
) -> OrderOperationResponse:
    try:
        result = await engine.schedule(
            order_id, body.scheduled_date, organization_id=organization_id
        )
    except DomainError as e:
        raise to_http_exception(e) from e
    return result_to_response(result)


@router.post(
    "/{order_id}/hold",
    response_model=OrderOperationResponse,
    responses={**OPERATION_RESPONSES, 502: {"model": ErrorResponse}},
    summary="Hold order",
    description="Put a pending order on hold once Helpship confirms the hold.",
)
async def hold_order(
    order_id: str,
    organization_id: Organization,
    engine: Engine,
    body: HoldOrderRequest | None = None,
) -> OrderOperationResponse:
    try:
        result = await engine.hold(
            order_id, body.note if body else None, organization_id=organization_id
        )
    except DomainError as e:
        raise to_http_exception(e) from e
    return result_to_response(result)


@router.post(
    "/{order_id}/unhold",
    response_model=OrderOperationResponse,
    responses=OPERATION_RESPONSES,
    summary="Release hold",
)
async def unhold_order(
    order_id: str,
    organization_id: Organization,
    engine: Engine,
) -> OrderOperationResponse:
    try:
        result = await engine.unhold(order_id, organization_id=organization_id)
    except DomainError as e:
        raise to_http_exception(e) from e
    return result_to_response(result)


@router.post(
    "/{order_id}/cancel",
    response_model=OrderOperationResponse,
    responses=OPERATION_RESPONSES,
    summary="Cancel order",
    description="Cancel locally; Helpship is updated in the background.",
)
async def cancel_order(
    order_id: str,
    organization_id: Organization,
    engine: Engine,
    operator_name: Annotated[str | None, Depends(get_operator_name)],
    body: CancelOrderRequest | None = None,
) -> OrderOperationResponse:
    try:
        result = await engine.cancel(
            order_id,
            note=body.note if body else None,
            canceller_name=operator_name,
            organization_id=organization_id,
        )
    except DomainError as e:
        raise to_http_exception(e) from e
    return result_to_response(result)


@router.post(
    "/{order_id}/uncancel",
    response_model=OrderOperationResponse,
    responses=OPERATION_RESPONSES,
    summary="Uncancel order",
    description="Restore a cancelled order to its previous status.",
)
async def uncancel_order(
    order_id: str,
    organization_id: Organization,
    engine: Engine,
) -> OrderOperationResponse:
    try:
        result = await engine.uncancel(order_id, organization_id=organization_id)
    except DomainError as e:
        raise to_http_exception(e) from e
    return result_to_response(result)


@router.post(
    "/{order_id}/promote",
    response_model=OrderOperationResponse,
    responses={**OPERATION_RESPONSES, 502: {"model": ErrorResponse}},
    summary="Promote testing order",
)
async def promote_order(
    order_id: str,
    organization_id: Organization,
    engine: Engine,
) -> OrderOperationResponse:
    try:
        result = await engine.promote(order_id, organization_id=organization_id)
    except DomainError as e:
        raise to_http_exception(e) from e
    return result_to_response(result)


@router.post(
    "/{order_id}/resync",
    response_model=OrderOperationResponse,
    responses={**OPERATION_RESPONSES, 502: {"model": ErrorResponse}},
    summary="Resync order to Helpship",
)
async def resync_order(
    order_id: str,
    organization_id: Organization,
    engine: Engine,
) -> OrderOperationResponse:
    try:
        result = await engine.resync(order_id, organization_id=organization_id)
    except DomainError as e:
        raise to_http_exception(e) from e
    return result_to_response(result)


@router.put(
    "/{order_id}/note",
    response_model=OrderOperationResponse,
    responses=OPERATION_RESPONSES,
    summary="Edit order note",
)
async def update_order_note(
    order_id: str,
    body: OrderNoteRequest,
    organization_id: Organization,
    engine: Engine,
) -> OrderOperationResponse:
    try:
        result = await engine.set_note(order_id, body.note, organization_id=organization_id)
    except DomainError as e:
        raise to_http_exception(e) from e
    return result_to_response(result)
