"""Order aggregate (CQRS) — the delivery order and its lifecycle state machine.

State Machine:
    PAYMENT_PENDING → PENDING → CONFIRMED → PREPARING → READY
        → PICKED_UP → IN_TRANSIT → DELIVERED → COMPLETED
    any non-terminal state → CANCELLED

PAYMENT_PENDING only exists for online payments; the payment webhook moves the
order to PENDING or cancels it. DELIVERED, COMPLETED and CANCELLED are
terminal for cancellation purposes; DELIVERED may still be closed out to
COMPLETED. Every status change appends one history record in the same unit of
work as the status write.
"""

import json
from datetime import timedelta
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    Text,
    ValueObject,
)

from delivery import settings
from delivery.domain import delivery
from delivery.errors import AlreadyResolved, Forbidden, InvalidState, InvalidTransition
from delivery.order.events import (
    ManualDispatchRequired,
    OrderPlaced,
    OrderStatusChanged,
    PaymentStatusChanged,
    RiderAssigned,
)
from delivery.shared.actor import Actor, Role
from delivery.shared.clock import as_utc, utcnow
from delivery.shared.money import money_equal, round_money
from delivery.sla.budgets import delivery_budget_seconds


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderType(Enum):
    FOOD = "food"
    PABILI = "pabili"
    PABAYAD = "pabayad"
    PARCEL = "parcel"


class OrderStatus(Enum):
    PAYMENT_PENDING = "payment_pending"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentMethod(Enum):
    CASH = "cash"
    ONLINE = "online"


class PaymentStatus(Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUND_PENDING = "refund_pending"
    REFUNDED = "refunded"


class DispatchStatus(Enum):
    UNASSIGNED = "unassigned"
    OFFERING = "offering"
    ASSIGNED = "assigned"
    NEEDS_MANUAL_DISPATCH = "needs_manual_dispatch"


_VALID_TRANSITIONS = {
    OrderStatus.PAYMENT_PENDING: {OrderStatus.PENDING, OrderStatus.CANCELLED},
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PREPARING, OrderStatus.CANCELLED},
    OrderStatus.PREPARING: {OrderStatus.READY, OrderStatus.CANCELLED},
    OrderStatus.READY: {OrderStatus.PICKED_UP, OrderStatus.CANCELLED},
    OrderStatus.PICKED_UP: {OrderStatus.IN_TRANSIT, OrderStatus.CANCELLED},
    OrderStatus.IN_TRANSIT: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: {OrderStatus.COMPLETED},
    OrderStatus.COMPLETED: set(),  # terminal
    OrderStatus.CANCELLED: set(),  # terminal
}

TERMINAL_STATUSES = {OrderStatus.DELIVERED, OrderStatus.COMPLETED, OrderStatus.CANCELLED}

# Statuses in which a rider can be offered or assigned the order
DISPATCHABLE_STATUSES = {OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY}

_VENDOR_OR_ADMIN = {Role.VENDOR.value, Role.ADMIN.value}
_RIDER_OR_ADMIN = {Role.RIDER.value, Role.ADMIN.value}

_TRANSITION_ROLES = {
    (OrderStatus.PAYMENT_PENDING, OrderStatus.PENDING): {Role.SYSTEM.value, Role.ADMIN.value},
    (OrderStatus.PENDING, OrderStatus.CONFIRMED): {Role.VENDOR.value, Role.ADMIN.value, Role.SYSTEM.value},
    (OrderStatus.CONFIRMED, OrderStatus.PREPARING): _VENDOR_OR_ADMIN,
    (OrderStatus.PREPARING, OrderStatus.READY): _VENDOR_OR_ADMIN,
    (OrderStatus.READY, OrderStatus.PICKED_UP): _RIDER_OR_ADMIN,
    (OrderStatus.PICKED_UP, OrderStatus.IN_TRANSIT): _RIDER_OR_ADMIN,
    (OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED): _RIDER_OR_ADMIN,
    (OrderStatus.DELIVERED, OrderStatus.COMPLETED): {Role.CUSTOMER.value, Role.ADMIN.value, Role.SYSTEM.value},
}

_CANCEL_ROLES = {Role.CUSTOMER.value, Role.VENDOR.value, Role.ADMIN.value, Role.SYSTEM.value}

# Once the rider holds the order only an admin can call it off
_ADMIN_ONLY_CANCEL_STATUSES = {OrderStatus.PICKED_UP, OrderStatus.IN_TRANSIT}


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@delivery.value_object(part_of="Order")
class Pricing:
    """Order money breakdown. The total must equal its components."""

    subtotal = Float(required=True, min_value=0.0)
    delivery_fee = Float(default=0.0, min_value=0.0)
    service_fee = Float(default=0.0, min_value=0.0)
    tax = Float(default=0.0, min_value=0.0)
    tip = Float(default=0.0, min_value=0.0)
    discount = Float(default=0.0, min_value=0.0)
    total = Float(required=True, min_value=0.0)
    currency = String(max_length=3, default=settings.CURRENCY)

    @invariant.post
    def total_must_equal_components(self):
        expected = (
            (self.subtotal or 0.0)
            + (self.delivery_fee or 0.0)
            + (self.service_fee or 0.0)
            + (self.tax or 0.0)
            + (self.tip or 0.0)
            - (self.discount or 0.0)
        )
        if not money_equal(expected, self.total or 0.0):
            raise ValidationError(
                {"total": [f"Total {self.total} does not match the sum of its components ({round_money(expected)})"]}
            )


@delivery.value_object(part_of="Order")
class GeoPoint:
    latitude = Float(required=True, min_value=-90.0, max_value=90.0)
    longitude = Float(required=True, min_value=-180.0, max_value=180.0)
    address = String(max_length=500)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@delivery.entity(part_of="Order")
class OrderItem:
    item_id = Identifier(required=True)
    name = String(required=True, max_length=255)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)
    notes = String(max_length=500)


@delivery.entity(part_of="Order")
class OrderStatusChange:
    """One immutable line of the order's status history.

    Audit notes (refund approvals and rejections) are recorded with
    ``is_status_change=False`` and ``from_status == to_status``.
    """

    from_status = String(max_length=50)
    to_status = String(required=True, max_length=50)
    changed_by = String(required=True, max_length=255)
    changed_by_role = String(required=True, max_length=50)
    reason = String(max_length=500)
    notes = Text()
    changed_at = DateTime(required=True)
    is_status_change = Boolean(default=True)


# ---------------------------------------------------------------------------
# Aggregate Root (CQRS)
# ---------------------------------------------------------------------------
@delivery.aggregate
class Order:
    order_number = String(required=True, max_length=20)
    order_type = String(choices=OrderType, default=OrderType.FOOD.value)
    customer_id = Identifier(required=True)
    restaurant_id = Identifier()
    rider_id = Identifier()
    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    previous_status = String(choices=OrderStatus)
    items = HasMany(OrderItem)
    status_history = HasMany(OrderStatusChange)
    pricing = ValueObject(Pricing)
    pickup_location = ValueObject(GeoPoint)
    dropoff_location = ValueObject(GeoPoint)
    payment_method = String(choices=PaymentMethod, default=PaymentMethod.CASH.value)
    payment_status = String(choices=PaymentStatus, default=PaymentStatus.PENDING.value)
    payment_reference = String(max_length=255)
    refunded_amount = Float(default=0.0)
    stock_reserved = Boolean(default=False)
    reserved_stock = Text()  # JSON: {item_id: quantity} taken from tracked rows
    dispatch_status = String(choices=DispatchStatus, default=DispatchStatus.UNASSIGNED.value)
    special_instructions = String(max_length=1000)
    cancellation_reason = String(max_length=500)
    cancelled_by = String(max_length=255)
    created_at = DateTime()
    auto_accept_deadline = DateTime()
    committed_delivery_at = DateTime()
    actual_delivery_at = DateTime()
    cancelled_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        order_number: str,
        order_type: str,
        customer_id: str,
        items_data: list[dict],
        pricing: dict,
        restaurant_id: str | None = None,
        payment_method: str = PaymentMethod.CASH.value,
        payment_reference: str | None = None,
        pickup_location: dict | None = None,
        dropoff_location: dict | None = None,
        special_instructions: str | None = None,
    ):
        """Place a new order. Online payments wait for the gateway before the vendor sees them."""
        if not items_data:
            raise ValidationError({"items": ["An order needs at least one item"]})
        if order_type == OrderType.FOOD.value and not restaurant_id:
            raise ValidationError({"restaurant_id": ["Food orders must name a restaurant"]})

        online = payment_method == PaymentMethod.ONLINE.value
        if online and not payment_reference:
            raise ValidationError({"payment_reference": ["Online payments need a gateway reference"]})
        initial_status = OrderStatus.PAYMENT_PENDING if online else OrderStatus.PENDING

        now = utcnow()
        order = cls(
            order_number=order_number,
            order_type=order_type,
            customer_id=customer_id,
            restaurant_id=restaurant_id,
            status=initial_status.value,
            pricing=Pricing(**pricing),
            pickup_location=GeoPoint(**pickup_location) if pickup_location else None,
            dropoff_location=GeoPoint(**dropoff_location) if dropoff_location else None,
            payment_method=payment_method,
            payment_status=PaymentStatus.PENDING.value,
            payment_reference=payment_reference,
            special_instructions=special_instructions,
            created_at=now,
            auto_accept_deadline=now + timedelta(seconds=settings.AUTO_ACCEPT_WINDOW_SECONDS),
            committed_delivery_at=now + timedelta(seconds=delivery_budget_seconds(order_type)),
            updated_at=now,
        )
        for item_data in items_data:
            order.add_items(OrderItem(**item_data))

        line_total = sum(item.quantity * item.unit_price for item in order.items)
        if not money_equal(line_total, order.pricing.subtotal):
            raise ValidationError(
                {
                    "subtotal": [
                        f"Subtotal {order.pricing.subtotal} does not match the line items ({round_money(line_total)})"
                    ]
                }
            )

        order.add_status_history(
            OrderStatusChange(
                from_status=None,
                to_status=initial_status.value,
                changed_by=customer_id,
                changed_by_role=Role.CUSTOMER.value,
                reason="Order placed",
                changed_at=now,
            )
        )
        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                order_number=order_number,
                order_type=order_type,
                customer_id=customer_id,
                restaurant_id=restaurant_id,
                status=initial_status.value,
                payment_method=payment_method,
                total=order.pricing.total,
                item_count=len(items_data),
                placed_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def current_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.current_status in TERMINAL_STATUSES

    @property
    def total(self) -> float:
        return self.pricing.total if self.pricing else 0.0

    def history(self) -> list:
        """Status history, oldest first."""
        return sorted(self.status_history or [], key=lambda change: as_utc(change.changed_at))

    def line_items(self) -> list[dict]:
        return [{"item_id": item.item_id, "quantity": item.quantity} for item in self.items or []]

    def can_transition_to(self, target: OrderStatus) -> bool:
        return target in _VALID_TRANSITIONS.get(self.current_status, set())

    # -------------------------------------------------------------------
    # State transition helpers
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target: OrderStatus) -> None:
        if not self.can_transition_to(target):
            raise InvalidTransition(
                f"Cannot transition from {self.status} to {target.value}",
                from_status=self.status,
                to_status=target.value,
            )

    def _assert_actor_may_transition(self, target: OrderStatus, actor: Actor) -> None:
        current = self.current_status
        if target == OrderStatus.CANCELLED:
            allowed = {Role.ADMIN.value} if current in _ADMIN_ONLY_CANCEL_STATUSES else _CANCEL_ROLES
        else:
            allowed = _TRANSITION_ROLES.get((current, target), set())

        if actor.role not in allowed:
            raise Forbidden(f"A {actor.role} cannot move an order from {current.value} to {target.value}")

        if actor.role == Role.VENDOR.value and actor.restaurant_id != self.restaurant_id:
            raise Forbidden("Vendors can only manage orders for their own restaurant")
        if actor.role == Role.RIDER.value and actor.id != self.rider_id:
            raise Forbidden("Only the assigned rider can update this order")
        if actor.role == Role.CUSTOMER.value and actor.id != self.customer_id:
            raise Forbidden("Customers can only manage their own orders")

    def _next_history_timestamp(self):
        now = utcnow()
        history = self.status_history or []
        if history:
            latest = max(as_utc(change.changed_at) for change in history)
            if now <= latest:
                now = latest + timedelta(microseconds=1)
        return now

    def transition_to(
        self,
        target_status: str,
        actor: Actor,
        reason: str | None = None,
        notes: str | None = None,
    ) -> OrderStatusChange:
        """Move to ``target_status`` on behalf of ``actor``, appending one history record."""
        try:
            target = OrderStatus(target_status)
        except ValueError:
            raise ValidationError({"status": [f"Unknown order status: {target_status}"]}) from None

        self._assert_can_transition(target)
        self._assert_actor_may_transition(target, actor)

        from_status = self.status
        now = self._next_history_timestamp()
        change = OrderStatusChange(
            from_status=from_status,
            to_status=target.value,
            changed_by=actor.id,
            changed_by_role=actor.role,
            reason=reason,
            notes=notes,
            changed_at=now,
        )
        self.add_status_history(change)
        self.previous_status = from_status
        self.status = target.value
        self.updated_at = now

        if target == OrderStatus.DELIVERED:
            self.actual_delivery_at = now
            if self.payment_method == PaymentMethod.CASH.value:
                self._set_payment_status(PaymentStatus.PAID)
        elif target == OrderStatus.CANCELLED:
            self.cancelled_at = now
            self.cancelled_by = actor.id
            self.cancellation_reason = reason

        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                order_number=self.order_number,
                customer_id=self.customer_id,
                restaurant_id=self.restaurant_id,
                rider_id=self.rider_id,
                from_status=from_status,
                to_status=target.value,
                changed_by=actor.id,
                changed_by_role=actor.role,
                reason=reason,
                changed_at=now,
            )
        )
        return change

    def cancel(self, actor: Actor, reason: str | None = None) -> OrderStatusChange:
        return self.transition_to(OrderStatus.CANCELLED.value, actor, reason=reason)

    def add_audit_note(self, actor: Actor, reason: str, notes: str | None = None) -> OrderStatusChange:
        """Append a history line that records an action without changing status."""
        now = self._next_history_timestamp()
        change = OrderStatusChange(
            from_status=self.status,
            to_status=self.status,
            changed_by=actor.id,
            changed_by_role=actor.role,
            reason=reason,
            notes=notes,
            changed_at=now,
            is_status_change=False,
        )
        self.add_status_history(change)
        self.updated_at = now
        return change

    # -------------------------------------------------------------------
    # Payment bookkeeping
    # -------------------------------------------------------------------
    def _set_payment_status(self, target: PaymentStatus, amount: float | None = None) -> None:
        from_status = self.payment_status
        now = utcnow()
        self.payment_status = target.value
        self.updated_at = now
        self.raise_(
            PaymentStatusChanged(
                order_id=str(self.id),
                from_status=from_status,
                to_status=target.value,
                amount=amount,
                changed_at=now,
            )
        )

    def _assert_payment_status(self, expected: PaymentStatus, action: str) -> None:
        if self.payment_status != expected.value:
            raise InvalidState(f"Cannot {action} while payment is {self.payment_status}")

    def confirm_payment(self) -> OrderStatusChange:
        """Gateway reported success: release the order to the vendor."""
        if self.current_status != OrderStatus.PAYMENT_PENDING:
            raise InvalidState(f"Order is {self.status}, not awaiting payment")
        self._set_payment_status(PaymentStatus.PAID, self.total)
        gateway = Actor.system("payment-gateway")
        return self.transition_to(OrderStatus.PENDING.value, gateway, reason="Payment confirmed")

    def fail_payment(self, reason: str | None = None) -> OrderStatusChange:
        """Gateway reported failure: the order is cancelled by the system."""
        if self.current_status != OrderStatus.PAYMENT_PENDING:
            raise InvalidState(f"Order is {self.status}, not awaiting payment")
        self._set_payment_status(PaymentStatus.FAILED)
        return self.cancel(Actor.system("payment-gateway"), reason=reason or "Payment failed")

    def mark_refund_pending(self, amount: float) -> None:
        self._assert_payment_status(PaymentStatus.PAID, "request a refund")
        if amount > self.total:
            raise ValidationError({"amount": ["Refund cannot exceed the order total"]})
        self._set_payment_status(PaymentStatus.REFUND_PENDING, amount)

    def mark_refunded(self, amount: float) -> None:
        self._assert_payment_status(PaymentStatus.REFUND_PENDING, "complete a refund")
        self.refunded_amount = round_money(amount)
        self._set_payment_status(PaymentStatus.REFUNDED, self.refunded_amount)

    def revert_refund(self) -> None:
        self._assert_payment_status(PaymentStatus.REFUND_PENDING, "reject a refund")
        self._set_payment_status(PaymentStatus.PAID)

    # -------------------------------------------------------------------
    # Inventory bookkeeping
    # -------------------------------------------------------------------
    def mark_stock_reserved(self, taken: dict[str, int]) -> None:
        """Remember exactly what the ledger took, so a release puts back only that."""
        self.stock_reserved = True
        self.reserved_stock = json.dumps(taken)

    def reserved_lines(self) -> list[dict]:
        taken = json.loads(self.reserved_stock) if self.reserved_stock else {}
        return [{"item_id": item_id, "quantity": quantity} for item_id, quantity in taken.items()]

    def mark_stock_released(self) -> None:
        self.stock_reserved = False
        self.reserved_stock = None

    # -------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------
    @property
    def is_dispatchable(self) -> bool:
        return self.current_status in DISPATCHABLE_STATUSES and not self.rider_id

    def mark_offering(self) -> None:
        if self.dispatch_status != DispatchStatus.ASSIGNED.value:
            self.dispatch_status = DispatchStatus.OFFERING.value
            self.updated_at = utcnow()

    def assign_rider(self, rider_id: str) -> None:
        if self.rider_id:
            if self.rider_id == rider_id:
                return
            raise AlreadyResolved(f"Order {self.order_number} is already assigned to another rider")
        if self.current_status not in DISPATCHABLE_STATUSES:
            raise InvalidState(f"Cannot assign a rider to an order that is {self.status}")

        now = utcnow()
        self.rider_id = rider_id
        self.dispatch_status = DispatchStatus.ASSIGNED.value
        self.updated_at = now
        self.raise_(
            RiderAssigned(
                order_id=str(self.id),
                order_number=self.order_number,
                customer_id=self.customer_id,
                rider_id=rider_id,
                assigned_at=now,
            )
        )

    def flag_for_manual_dispatch(self, attempts: int) -> None:
        now = utcnow()
        self.dispatch_status = DispatchStatus.NEEDS_MANUAL_DISPATCH.value
        self.updated_at = now
        self.raise_(
            ManualDispatchRequired(
                order_id=str(self.id),
                order_number=self.order_number,
                attempts=attempts,
                flagged_at=now,
            )
        )
