"""Rider aggregate (CQRS) — an independent courier's availability, position and track record."""

from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, Identifier, Integer, String, ValueObject

from delivery import settings
from delivery.domain import delivery
from delivery.shared.clock import utcnow


@delivery.value_object(part_of="Rider")
class RiderLocation:
    latitude = Float(required=True, min_value=-90.0, max_value=90.0)
    longitude = Float(required=True, min_value=-180.0, max_value=180.0)


@delivery.event(part_of="Rider")
class RiderWentOnline:
    __version__ = 1

    rider_id = Identifier(required=True)
    occurred_at = DateTime(required=True)


@delivery.event(part_of="Rider")
class RiderWentOffline:
    __version__ = 1

    rider_id = Identifier(required=True)
    occurred_at = DateTime(required=True)


@delivery.aggregate
class Rider:
    user_id = Identifier(required=True)
    name = String(required=True, max_length=255)
    vehicle_type = String(max_length=50)
    is_online = Boolean(default=False)
    is_verified = Boolean(default=False)
    is_available = Boolean(default=True)
    location = ValueObject(RiderLocation)
    rating = Float(default=5.0, min_value=0.0, max_value=5.0)
    performance_score = Float(default=50.0, min_value=0.0, max_value=100.0)
    on_time_rate = Float(default=100.0, min_value=0.0, max_value=100.0)
    active_orders = Integer(default=0, min_value=0)
    max_active_orders = Integer(default=settings.DEFAULT_RIDER_CAPACITY, min_value=1)
    last_seen_at = DateTime()
    created_at = DateTime()

    @classmethod
    def register(
        cls,
        user_id: str,
        name: str,
        vehicle_type: str | None = None,
        is_verified: bool = False,
        rating: float = 5.0,
        performance_score: float = 50.0,
        on_time_rate: float = 100.0,
        max_active_orders: int = settings.DEFAULT_RIDER_CAPACITY,
    ):
        now = utcnow()
        return cls(
            id=user_id,
            user_id=user_id,
            name=name,
            vehicle_type=vehicle_type,
            is_verified=is_verified,
            rating=rating,
            performance_score=performance_score,
            on_time_rate=on_time_rate,
            max_active_orders=max_active_orders,
            created_at=now,
        )

    @property
    def has_capacity(self) -> bool:
        return (self.active_orders or 0) < self.max_active_orders

    def spare_capacity(self) -> int:
        return max(self.max_active_orders - (self.active_orders or 0), 0)

    def go_online(self, latitude: float, longitude: float) -> None:
        if not self.is_verified:
            raise ValidationError({"is_verified": ["Unverified riders cannot go online"]})
        now = utcnow()
        self.is_online = True
        self.location = RiderLocation(latitude=latitude, longitude=longitude)
        self.last_seen_at = now
        self.raise_(RiderWentOnline(rider_id=str(self.id), occurred_at=now))

    def go_offline(self) -> None:
        now = utcnow()
        self.is_online = False
        self.last_seen_at = now
        self.raise_(RiderWentOffline(rider_id=str(self.id), occurred_at=now))

    def update_location(self, latitude: float, longitude: float) -> None:
        self.location = RiderLocation(latitude=latitude, longitude=longitude)
        self.last_seen_at = utcnow()

    def verify(self) -> None:
        self.is_verified = True

    def set_availability(self, available: bool) -> None:
        self.is_available = available

    def take_order(self, count: int = 1) -> None:
        if (self.active_orders or 0) + count > self.max_active_orders:
            raise ValidationError({"active_orders": ["Rider is already at capacity"]})
        self.active_orders = (self.active_orders or 0) + count

    def finish_order(self) -> None:
        self.active_orders = max((self.active_orders or 0) - 1, 0)
