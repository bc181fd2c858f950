"""Payment gateway factory.

``get_gateway()`` returns the adapter named by ``DELIVERY_PAYMENT_GATEWAY``
(``fake`` by default); ``set_gateway()`` swaps it, mostly for tests.
"""

import os

from delivery.payment.port import PaymentGateway

_current_gateway: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    global _current_gateway
    if _current_gateway is None:
        adapter = os.environ.get("DELIVERY_PAYMENT_GATEWAY", "fake")
        if adapter == "fake":
            from delivery.payment.fake_adapter import FakeGateway

            _current_gateway = FakeGateway()
        else:
            raise ValueError(f"Unknown payment gateway adapter: {adapter}")
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    global _current_gateway
    _current_gateway = None
