"""Rider registry — sign-up, shift start/end and position updates."""

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Boolean, Float, Identifier, Integer, String
from protean.utils.globals import current_domain

from delivery import settings
from delivery.dispatch.dispatcher import load_rider
from delivery.dispatch.rider import Rider
from delivery.domain import delivery

logger = structlog.get_logger(__name__)


@delivery.command(part_of="Rider")
class RegisterRider:
    user_id = Identifier(required=True)
    name = String(required=True, max_length=255)
    vehicle_type = String(max_length=50)
    is_verified = Boolean(default=False)
    rating = Float(default=5.0, min_value=0.0, max_value=5.0)
    performance_score = Float(default=50.0, min_value=0.0, max_value=100.0)
    on_time_rate = Float(default=100.0, min_value=0.0, max_value=100.0)
    max_active_orders = Integer(default=settings.DEFAULT_RIDER_CAPACITY, min_value=1)


@delivery.command(part_of="Rider")
class VerifyRider:
    rider_id = Identifier(required=True)


@delivery.command(part_of="Rider")
class GoOnline:
    rider_id = Identifier(required=True)
    latitude = Float(required=True, min_value=-90.0, max_value=90.0)
    longitude = Float(required=True, min_value=-180.0, max_value=180.0)


@delivery.command(part_of="Rider")
class GoOffline:
    rider_id = Identifier(required=True)


@delivery.command(part_of="Rider")
class UpdateRiderLocation:
    rider_id = Identifier(required=True)
    latitude = Float(required=True, min_value=-90.0, max_value=90.0)
    longitude = Float(required=True, min_value=-180.0, max_value=180.0)


@delivery.command_handler(part_of=Rider)
class RiderRegistryHandler:
    @handle(RegisterRider)
    def register_rider(self, command):
        repo = current_domain.repository_for(Rider)
        if repo._dao.query.filter(id=command.user_id).all().items:
            raise ValidationError({"user_id": [f"Rider {command.user_id} is already registered"]})

        rider = Rider.register(
            user_id=command.user_id,
            name=command.name,
            vehicle_type=command.vehicle_type,
            is_verified=command.is_verified,
            rating=command.rating,
            performance_score=command.performance_score,
            on_time_rate=command.on_time_rate,
            max_active_orders=command.max_active_orders,
        )
        repo.add(rider)
        logger.info("Rider registered", rider_id=rider.user_id, verified=rider.is_verified)
        return str(rider.id)

    @handle(VerifyRider)
    def verify_rider(self, command):
        rider = load_rider(command.rider_id)
        rider.verify()
        current_domain.repository_for(Rider).add(rider)
        return rider

    @handle(GoOnline)
    def go_online(self, command):
        rider = load_rider(command.rider_id)
        rider.go_online(command.latitude, command.longitude)
        current_domain.repository_for(Rider).add(rider)
        logger.info("Rider online", rider_id=rider.user_id)
        return rider

    @handle(GoOffline)
    def go_offline(self, command):
        rider = load_rider(command.rider_id)
        rider.go_offline()
        current_domain.repository_for(Rider).add(rider)
        logger.info("Rider offline", rider_id=rider.user_id)
        return rider

    @handle(UpdateRiderLocation)
    def update_location(self, command):
        rider = load_rider(command.rider_id)
        rider.update_location(command.latitude, command.longitude)
        current_domain.repository_for(Rider).add(rider)
        return rider
