"""
Payment gateway collaborator.

Only a stub ships with the backend: it waits a fixed delay and reports
success. A real processor plugs in by implementing `PaymentGateway`.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict

from luckydraw.draw.models import PaymentOutcome
from luckydraw.utils.logger import get_logger

logger = get_logger(__name__)


class PaymentGateway(ABC):
    """Interface for initiating an entry payment."""

    @abstractmethod
    async def initiate_payment(self, amount: int, order_id: int) -> PaymentOutcome:
        ...


class StubPaymentGateway(PaymentGateway):
    """Always succeeds after `delay_seconds`."""

    def __init__(self, delay_seconds: float = 1.0) -> None:
        self.delay_seconds = delay_seconds

    async def initiate_payment(self, amount: int, order_id: int) -> PaymentOutcome:
        logger.info("Stub payment of %s for order %s", amount, order_id)
        if self.delay_seconds > 0:
            await asyncio.sleep(self.delay_seconds)
        return PaymentOutcome(success=True, reference=f"stub-{order_id}", message="Simulated payment")


def create_payment_gateway(config: Dict[str, Any]) -> PaymentGateway:
    payment_cfg = config.get("payment", {})
    return StubPaymentGateway(delay_seconds=float(payment_cfg.get("delay_seconds", 1.0)))
