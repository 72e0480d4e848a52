"""Payment schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from fleetdesk.models.payment import PaymentMethod


class PaymentBase(BaseModel):
    amount: Decimal = Field(gt=0)
    method: PaymentMethod
    reference: Optional[str] = None
    notes: Optional[str] = None


class PaymentCreate(PaymentBase):
    pass


class PaymentRead(BaseModel):
    id: int
    invoice_id: int
    amount: Decimal
    method: str
    reference: Optional[str] = None
    notes: Optional[str] = None
    received_by: Optional[int] = None
    paid_at: datetime
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
