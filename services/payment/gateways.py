"""
services/payment/gateways.py
Simulated payment processors. Nothing leaves the process: each gateway
sleeps for its typical latency and succeeds with a fixed probability.
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional

from config.settings import settings
from shared.models.models import PaymentMethod
from shared.utils import simulation


@dataclass(frozen=True)
class GatewayResult:
    success: bool
    message: str
    transaction_id: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "transaction_id": self.transaction_id,
        }


@dataclass(frozen=True)
class SimulatedGateway:
    method: PaymentMethod
    display_name: str
    latency_seconds: float
    failure_rate: float
    transaction_prefix: str
    success_message: str
    failure_message: str

    async def charge(self, amount: Decimal, card_details: Optional[dict] = None) -> GatewayResult:
        await simulation.pause(self.latency_seconds * settings.PAYMENT_LATENCY_SCALE)
        if simulation.roll() > self.failure_rate:
            return GatewayResult(
                success=True,
                message=self.success_message,
                transaction_id=f"{self.transaction_prefix}{uuid.uuid4()}",
            )
        return GatewayResult(success=False, message=self.failure_message)


GATEWAYS: Dict[PaymentMethod, SimulatedGateway] = {
    PaymentMethod.STRIPE: SimulatedGateway(
        method=PaymentMethod.STRIPE,
        display_name="Credit Card (Stripe)",
        latency_seconds=1.0,
        failure_rate=0.05,
        transaction_prefix="stripe_",
        success_message="Payment processed successfully",
        failure_message="Payment failed - insufficient funds",
    ),
    PaymentMethod.PAYPAL: SimulatedGateway(
        method=PaymentMethod.PAYPAL,
        display_name="PayPal",
        latency_seconds=0.8,
        failure_rate=0.03,
        transaction_prefix="pp_",
        success_message="PayPal payment successful",
        failure_message="PayPal payment declined",
    ),
    PaymentMethod.SQUARE: SimulatedGateway(
        method=PaymentMethod.SQUARE,
        display_name="Square",
        latency_seconds=1.2,
        failure_rate=0.07,
        transaction_prefix="sq_",
        success_message="Square payment completed",
        failure_message="Square payment error",
    ),
}


def get_gateway(method) -> SimulatedGateway:
    return GATEWAYS[PaymentMethod(method)]


async def refund(amount: Decimal) -> Optional[str]:
    """Simulated refund. Returns a refund id, or None if the processor refused."""
    await simulation.pause(0.5 * settings.PAYMENT_LATENCY_SCALE)
    if simulation.roll() > settings.REFUND_FAILURE_RATE:
        return f"refund_{uuid.uuid4()}"
    return None
