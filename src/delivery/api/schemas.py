"""Pydantic API schemas for the Delivery domain.

These are the external API contracts, kept separate from domain commands.
The API layer translates between these schemas and the operations module.
"""

from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------
class OrderItemRequest(BaseModel):
    item_id: str
    name: str
    quantity: int = Field(ge=1)
    unit_price: float = Field(ge=0)
    notes: str | None = None


class LocationRequest(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    address: str | None = None


class CreateOrderRequest(BaseModel):
    order_type: str = "food"
    customer_id: str
    restaurant_id: str | None = None
    items: list[OrderItemRequest]
    subtotal: float
    delivery_fee: float = 0.0
    service_fee: float = 0.0
    tax: float = 0.0
    tip: float = 0.0
    discount: float = 0.0
    total: float
    payment_method: str = "cash"
    payment_reference: str | None = None
    pickup_location: LocationRequest | None = None
    dropoff_location: LocationRequest | None = None
    special_instructions: str | None = None


class TransitionRequest(BaseModel):
    status: str
    reason: str | None = None
    notes: str | None = None


class CancelOrderRequest(BaseModel):
    reason: str
    request_refund: bool = True


class ProcessRefundRequest(BaseModel):
    action: str
    notes: str | None = None
    adjusted_amount: float | None = None


class PaymentWebhookRequest(BaseModel):
    payment_reference: str
    status: str
    reason: str | None = None


class StartDispatchRequest(BaseModel):
    order_id: str


class RiderResponseRequest(BaseModel):
    accept: bool
    reason: str | None = None


class BatchOfferRequest(BaseModel):
    order_ids: list[str]
    rider_id: str


class ManualAssignRequest(BaseModel):
    order_id: str
    rider_id: str


class ExpireOffersRequest(BaseModel):
    as_of: datetime | None = None


class RegisterRiderRequest(BaseModel):
    user_id: str
    name: str
    vehicle_type: str | None = None
    is_verified: bool = False
    rating: float = 5.0
    performance_score: float = 50.0
    on_time_rate: float = 100.0
    max_active_orders: int = 3


class RiderLocationRequest(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class RegisterInventoryItemRequest(BaseModel):
    item_id: str
    restaurant_id: str
    name: str
    price: float | None = None
    stock_quantity: int = -1
    low_stock_threshold: int = 5


class RestockRequest(BaseModel):
    stock_quantity: int


class SlaEventRequest(BaseModel):
    event_kind: str
    timestamp: datetime | None = None


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------
class StatusResponse(BaseModel):
    status: str


class StatusChangeResponse(BaseModel):
    from_status: str | None
    to_status: str
    changed_by: str
    changed_by_role: str
    reason: str | None = None
    notes: str | None = None
    changed_at: datetime
    is_status_change: bool = True


class OrderResponse(BaseModel):
    order_id: str
    order_number: str
    order_type: str
    status: str
    payment_method: str
    payment_status: str
    dispatch_status: str
    customer_id: str
    restaurant_id: str | None = None
    rider_id: str | None = None
    total: float
    refunded_amount: float = 0.0
    created_at: datetime | None = None
    history: list[StatusChangeResponse] = []


class CancellationResponse(BaseModel):
    order_id: str
    order_status: str
    previous_status: str
    refund_status: str
    refund_amount: float
    refund_percentage: int
    cancellation_stage: str
    requires_dispute: bool
    refund_id: str | None = None
    degraded: str | None = None


class RefundResponse(BaseModel):
    refund_id: str
    order_id: str
    status: str
    amount: float
    original_amount: float
    percentage: int
    cancellation_stage: str
    approved_by: str | None = None
    rejected_by: str | None = None
    gateway_transaction_id: str | None = None
    timeline: list[dict] = []


class EligibilityResponse(BaseModel):
    order_id: str
    order_number: str
    current_status: str
    total_amount: float
    percentage: int
    amount: float
    stage: str
    requires_dispute: bool
    is_eligible: bool
    reason: str
    already_cancelled: bool
    has_pending_refund: bool
    has_completed_refund: bool
    breakdown: dict = {}


class DispatchOutcomeResponse(BaseModel):
    order_id: str
    status: str
    attempts: int
    offer_id: str | None = None
    rider_id: str | None = None
    expires_at: datetime | None = None


class ExpiredCountResponse(BaseModel):
    expired_count: int


class RiderResponse(BaseModel):
    rider_id: str
    name: str
    is_online: bool
    is_verified: bool
    active_orders: int
    max_active_orders: int


class InventoryItemResponse(BaseModel):
    item_id: str
    restaurant_id: str
    name: str
    stock_quantity: int


class MilestoneResponse(BaseModel):
    recorded_at: str
    elapsed_seconds: float
    breached: bool


class BreachesResponse(BaseModel):
    order_id: str
    breaches: list[str]


class OverdueMilestoneResponse(BaseModel):
    order_id: str
    milestone: str
    due_at: datetime
    overdue_seconds: float
