"""Payment gateway port.

The delivery domain only needs two things from the gateway: paying money back
for an approved refund, and proving that an inbound webhook is genuine.
Charging the customer happens before an order reaches this service.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RefundResult:
    success: bool
    transaction_id: str | None = None
    gateway_status: str | None = None
    failure_reason: str | None = None


class PaymentGateway(ABC):
    @abstractmethod
    def initiate_refund(self, payment_reference: str, amount: float) -> RefundResult:
        """Send ``amount`` back against the original payment."""
        ...

    @abstractmethod
    def verify_webhook_signature(self, payload: str, signature: str) -> bool:
        ...
