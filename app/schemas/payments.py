from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field


class PaymentEventObject(BaseModel):
    id: str
    # Minor currency units (cents), as the processor reports them.
    amount: int | None = None
    amount_received: int | None = None
    currency: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def captured_amount(self) -> Decimal | None:
        cents = self.amount_received if self.amount_received is not None else self.amount
        if cents is None:
            return None
        return (Decimal(cents) / 100).quantize(Decimal("0.01"))


class PaymentEventData(BaseModel):
    object: PaymentEventObject


class PaymentEvent(BaseModel):
    """Subset of the processor's event envelope the gate listener needs."""

    id: str
    type: str
    data: PaymentEventData


class PaymentWebhookAck(BaseModel):
    received: bool = True
    handled: bool = False
    changed: bool = False
