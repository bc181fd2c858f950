"""In-process payment gateway for development and tests.

Refunds succeed unless configured otherwise; every call is recorded so tests
can assert on what was sent.
"""

from uuid import uuid4

from delivery.payment.port import PaymentGateway, RefundResult


class FakeGateway(PaymentGateway):
    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Refund declined by issuer"
        self.calls: list[dict] = []

    def configure(self, should_succeed: bool, failure_reason: str = "Refund declined by issuer") -> None:
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def initiate_refund(self, payment_reference: str, amount: float) -> RefundResult:
        self.calls.append({"method": "initiate_refund", "payment_reference": payment_reference, "amount": amount})

        if self.should_succeed:
            return RefundResult(
                success=True,
                transaction_id=f"fake_ref_{uuid4().hex[:12]}",
                gateway_status="succeeded",
            )
        return RefundResult(success=False, gateway_status="failed", failure_reason=self.failure_reason)

    def verify_webhook_signature(self, payload: str, signature: str) -> bool:  # noqa: ARG002
        return signature == "test-signature"
