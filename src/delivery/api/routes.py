"""FastAPI routes for the Delivery domain.

The acting user arrives already authenticated upstream, as ``X-Actor-Id``,
``X-Actor-Role`` and (for vendors) ``X-Restaurant-Id`` headers.
"""

import json

from fastapi import APIRouter, Depends, Header, HTTPException

from delivery import operations
from delivery.api.schemas import (
    BatchOfferRequest,
    BreachesResponse,
    CancellationResponse,
    CancelOrderRequest,
    CreateOrderRequest,
    DispatchOutcomeResponse,
    EligibilityResponse,
    ExpiredCountResponse,
    ExpireOffersRequest,
    InventoryItemResponse,
    ManualAssignRequest,
    MilestoneResponse,
    OrderResponse,
    OverdueMilestoneResponse,
    PaymentWebhookRequest,
    ProcessRefundRequest,
    RefundResponse,
    RegisterInventoryItemRequest,
    RegisterRiderRequest,
    RestockRequest,
    RiderLocationRequest,
    RiderResponse,
    RiderResponseRequest,
    SlaEventRequest,
    StartDispatchRequest,
    StatusChangeResponse,
    StatusResponse,
    TransitionRequest,
)
from delivery.payment import get_gateway
from delivery.shared.actor import Actor, Role

_ROLES = {role.value for role in Role}


def current_actor(
    x_actor_id: str = Header(...),
    x_actor_role: str = Header(...),
    x_restaurant_id: str | None = Header(default=None),
) -> Actor:
    if x_actor_role not in _ROLES:
        raise HTTPException(status_code=400, detail=f"Unknown actor role: {x_actor_role}")
    return Actor(id=x_actor_id, role=x_actor_role, restaurant_id=x_restaurant_id)


def _order_response(order) -> OrderResponse:
    return OrderResponse(
        order_id=str(order.id),
        order_number=order.order_number,
        order_type=order.order_type,
        status=order.status,
        payment_method=order.payment_method,
        payment_status=order.payment_status,
        dispatch_status=order.dispatch_status,
        customer_id=str(order.customer_id),
        restaurant_id=str(order.restaurant_id) if order.restaurant_id else None,
        rider_id=str(order.rider_id) if order.rider_id else None,
        total=order.total,
        refunded_amount=order.refunded_amount or 0.0,
        created_at=order.created_at,
        history=[
            StatusChangeResponse(
                from_status=change.from_status,
                to_status=change.to_status,
                changed_by=change.changed_by,
                changed_by_role=change.changed_by_role,
                reason=change.reason,
                notes=change.notes,
                changed_at=change.changed_at,
                is_status_change=change.is_status_change,
            )
            for change in order.history()
        ],
    )


def _refund_response(refund) -> RefundResponse:
    return RefundResponse(
        refund_id=str(refund.id),
        order_id=str(refund.order_id),
        status=refund.status,
        amount=refund.amount,
        original_amount=refund.original_amount,
        percentage=refund.percentage,
        cancellation_stage=refund.cancellation_stage,
        approved_by=refund.approved_by,
        rejected_by=refund.rejected_by,
        gateway_transaction_id=refund.gateway_transaction_id,
        timeline=refund.timeline(),
    )


def _outcome_response(outcome) -> DispatchOutcomeResponse:
    return DispatchOutcomeResponse(
        order_id=outcome.order_id,
        status=outcome.status,
        attempts=outcome.attempts,
        offer_id=outcome.offer_id,
        rider_id=outcome.rider_id,
        expires_at=outcome.expires_at,
    )


def _rider_response(rider) -> RiderResponse:
    return RiderResponse(
        rider_id=str(rider.id),
        name=rider.name,
        is_online=rider.is_online,
        is_verified=rider.is_verified,
        active_orders=rider.active_orders or 0,
        max_active_orders=rider.max_active_orders,
    )


def _require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.post("", status_code=201, response_model=OrderResponse)
async def create_order(body: CreateOrderRequest) -> OrderResponse:
    """Place an order and reserve its stock."""
    order = operations.create_order(
        order_type=body.order_type,
        customer_id=body.customer_id,
        restaurant_id=body.restaurant_id,
        items=[item.model_dump() for item in body.items],
        subtotal=body.subtotal,
        delivery_fee=body.delivery_fee,
        service_fee=body.service_fee,
        tax=body.tax,
        tip=body.tip,
        discount=body.discount,
        total=body.total,
        payment_method=body.payment_method,
        payment_reference=body.payment_reference,
        pickup_location=body.pickup_location.model_dump() if body.pickup_location else None,
        dropoff_location=body.dropoff_location.model_dump() if body.dropoff_location else None,
        special_instructions=body.special_instructions,
    )
    return _order_response(order)


@order_router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str) -> OrderResponse:
    return _order_response(operations.get_order(order_id))


@order_router.put("/{order_id}/status", response_model=OrderResponse)
async def transition_status(
    order_id: str,
    body: TransitionRequest,
    actor: Actor = Depends(current_actor),
) -> OrderResponse:
    """Move the order to its next lifecycle status."""
    order = operations.transition_status(order_id, body.status, actor, reason=body.reason, notes=body.notes)
    return _order_response(order)


@order_router.post("/{order_id}/cancel", response_model=CancellationResponse)
async def cancel_order(
    order_id: str,
    body: CancelOrderRequest,
    actor: Actor = Depends(current_actor),
) -> CancellationResponse:
    """Cancel the order and request the refund it is owed."""
    result = operations.cancel_order(order_id, body.reason, actor, request_refund=body.request_refund)
    return CancellationResponse(
        order_id=result.order_id,
        order_status=result.order_status,
        previous_status=result.previous_status,
        refund_status=result.refund_status,
        refund_amount=result.refund_amount,
        refund_percentage=result.refund_percentage,
        cancellation_stage=result.cancellation_stage,
        requires_dispute=result.requires_dispute,
        refund_id=result.refund_id,
        degraded=result.degraded,
    )


@order_router.get("/{order_id}/refund-eligibility", response_model=EligibilityResponse)
async def refund_eligibility(order_id: str, actor: Actor = Depends(current_actor)) -> EligibilityResponse:
    result = operations.get_refund_eligibility(order_id, actor)
    return EligibilityResponse(
        order_id=result.order_id,
        order_number=result.order_number,
        current_status=result.current_status,
        total_amount=result.total_amount,
        percentage=result.percentage,
        amount=result.amount,
        stage=result.stage,
        requires_dispute=result.requires_dispute,
        is_eligible=result.is_eligible,
        reason=result.reason,
        already_cancelled=result.already_cancelled,
        has_pending_refund=result.has_pending_refund,
        has_completed_refund=result.has_completed_refund,
        breakdown=result.breakdown,
    )


# ---------------------------------------------------------------------------
# Refund Router
# ---------------------------------------------------------------------------
refund_router = APIRouter(prefix="/refunds", tags=["refunds"])


@refund_router.put("/{refund_id}", response_model=RefundResponse)
async def process_refund(
    refund_id: str,
    body: ProcessRefundRequest,
    actor: Actor = Depends(current_actor),
) -> RefundResponse:
    """Approve (and pay out) or reject a pending refund. Admin only."""
    refund = operations.process_refund(
        refund_id,
        body.action,
        actor,
        notes=body.notes,
        adjusted_amount=body.adjusted_amount,
    )
    return _refund_response(refund)


# ---------------------------------------------------------------------------
# Payment Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.post("/webhook", response_model=OrderResponse)
async def payment_webhook(
    body: PaymentWebhookRequest,
    x_gateway_signature: str = Header(default=""),
) -> OrderResponse:
    """Gateway callback for an online payment's outcome."""
    gateway = get_gateway()
    if not gateway.verify_webhook_signature(json.dumps(body.model_dump()), x_gateway_signature):
        raise HTTPException(status_code=401, detail="Invalid payment webhook signature")

    if body.status == "paid":
        order = operations.payment_confirmed(body.payment_reference)
    elif body.status == "failed":
        order = operations.payment_failed(body.payment_reference, reason=body.reason)
    else:
        raise HTTPException(status_code=400, detail=f"Unsupported payment status: {body.status}")
    return _order_response(order)


# ---------------------------------------------------------------------------
# Dispatch Router
# ---------------------------------------------------------------------------
dispatch_router = APIRouter(prefix="/dispatch", tags=["dispatch"])


@dispatch_router.post("/offers", response_model=DispatchOutcomeResponse)
async def offer_to_rider(body: StartDispatchRequest, actor: Actor = Depends(current_actor)) -> DispatchOutcomeResponse:
    """Offer an order to the best available rider."""
    if actor.role not in {Role.ADMIN.value, Role.SYSTEM.value, Role.VENDOR.value}:
        raise HTTPException(status_code=403, detail="Not allowed to dispatch orders")
    return _outcome_response(operations.offer_to_rider(body.order_id))


@dispatch_router.put("/offers/{offer_id}/response", response_model=DispatchOutcomeResponse)
async def record_rider_response(
    offer_id: str,
    body: RiderResponseRequest,
    actor: Actor = Depends(current_actor),
) -> DispatchOutcomeResponse:
    outcome = operations.record_rider_response(offer_id, body.accept, actor, reason=body.reason)
    return _outcome_response(outcome)


@dispatch_router.post("/batches", response_model=list[DispatchOutcomeResponse])
async def offer_batch(body: BatchOfferRequest, actor: Actor = Depends(current_actor)) -> list[DispatchOutcomeResponse]:
    _require_admin(actor)
    return [_outcome_response(outcome) for outcome in operations.offer_batch(body.order_ids, body.rider_id)]


@dispatch_router.post("/manual-assignments", response_model=DispatchOutcomeResponse)
async def manual_assign(body: ManualAssignRequest, actor: Actor = Depends(current_actor)) -> DispatchOutcomeResponse:
    return _outcome_response(operations.manual_assign(body.order_id, body.rider_id, actor))


@dispatch_router.post("/offers/expire", response_model=ExpiredCountResponse)
async def expire_overdue_offers(body: ExpireOffersRequest) -> ExpiredCountResponse:
    """Maintenance endpoint for an external scheduler."""
    return ExpiredCountResponse(expired_count=operations.expire_overdue_offers(body.as_of))


# ---------------------------------------------------------------------------
# Rider Router
# ---------------------------------------------------------------------------
rider_router = APIRouter(prefix="/riders", tags=["riders"])


@rider_router.post("", status_code=201, response_model=RiderResponse)
async def register_rider(body: RegisterRiderRequest) -> RiderResponse:
    profile = body.model_dump(exclude={"user_id", "name"})
    return _rider_response(operations.register_rider(body.user_id, body.name, **profile))


@rider_router.put("/{rider_id}/verify", response_model=RiderResponse)
async def verify_rider(rider_id: str, actor: Actor = Depends(current_actor)) -> RiderResponse:
    _require_admin(actor)
    return _rider_response(operations.verify_rider(rider_id))


@rider_router.put("/{rider_id}/online", response_model=RiderResponse)
async def go_online(rider_id: str, body: RiderLocationRequest) -> RiderResponse:
    return _rider_response(operations.rider_online(rider_id, body.latitude, body.longitude))


@rider_router.put("/{rider_id}/offline", response_model=RiderResponse)
async def go_offline(rider_id: str) -> RiderResponse:
    return _rider_response(operations.rider_offline(rider_id))


@rider_router.put("/{rider_id}/location", response_model=StatusResponse)
async def update_location(rider_id: str, body: RiderLocationRequest) -> StatusResponse:
    operations.update_rider_location(rider_id, body.latitude, body.longitude)
    return StatusResponse(status="location_updated")


# ---------------------------------------------------------------------------
# Inventory Router
# ---------------------------------------------------------------------------
inventory_router = APIRouter(prefix="/inventory", tags=["inventory"])


@inventory_router.post("", status_code=201, response_model=InventoryItemResponse)
async def register_inventory_item(body: RegisterInventoryItemRequest) -> InventoryItemResponse:
    item = operations.register_inventory_item(**body.model_dump())
    return InventoryItemResponse(
        item_id=str(item.id),
        restaurant_id=str(item.restaurant_id),
        name=item.name,
        stock_quantity=item.stock_quantity,
    )


@inventory_router.put("/{item_id}/restock", response_model=InventoryItemResponse)
async def restock_inventory_item(item_id: str, body: RestockRequest) -> InventoryItemResponse:
    operations.restock_inventory_item(item_id, body.stock_quantity)
    item = operations.get_inventory_item(item_id)
    return InventoryItemResponse(
        item_id=str(item.id),
        restaurant_id=str(item.restaurant_id),
        name=item.name,
        stock_quantity=item.stock_quantity,
    )


# ---------------------------------------------------------------------------
# SLA Router
# ---------------------------------------------------------------------------
sla_router = APIRouter(prefix="/sla", tags=["sla"])


@sla_router.post("/{order_id}/events", response_model=MilestoneResponse)
async def record_sla_event(order_id: str, body: SlaEventRequest) -> MilestoneResponse:
    record = operations.record_sla_event(order_id, body.event_kind, body.timestamp)
    return MilestoneResponse(
        recorded_at=str(record["recorded_at"]),
        elapsed_seconds=record["elapsed_seconds"],
        breached=record["breached"],
    )


@sla_router.get("/{order_id}/breaches", response_model=BreachesResponse)
async def get_breaches(order_id: str) -> BreachesResponse:
    return BreachesResponse(order_id=order_id, breaches=sorted(operations.get_breaches(order_id)))


@sla_router.get("/overdue", response_model=list[OverdueMilestoneResponse])
async def scan_overdue() -> list[OverdueMilestoneResponse]:
    return [
        OverdueMilestoneResponse(
            order_id=item.order_id,
            milestone=item.milestone,
            due_at=item.due_at,
            overdue_seconds=item.overdue_seconds,
        )
        for item in operations.scan_overdue_sla()
    ]
