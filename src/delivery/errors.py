"""Business-rule errors raised by the delivery domain.

Malformed input is reported with Protean's ``ValidationError``. Everything
else a caller can act on derives from ``DeliveryError`` and carries a
machine-readable ``kind`` next to the human message.
"""


class DeliveryError(Exception):
    kind = "delivery_error"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"kind": self.kind, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFound(DeliveryError):
    kind = "not_found"


class Forbidden(DeliveryError):
    kind = "forbidden"


class InvalidTransition(DeliveryError):
    """The requested status is not reachable from the current one."""

    kind = "invalid_transition"


class InvalidState(DeliveryError):
    """The order or refund is not in a state that permits the operation."""

    kind = "invalid_state"


class AlreadyResolved(DeliveryError):
    """Lost a race: the offer or refund was settled by someone else first."""

    kind = "already_resolved"


class DependencyFailure(DeliveryError):
    """A collaborator (payment gateway, inventory, refund store) failed."""

    kind = "dependency_failure"
