"""Invoice schemas."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from fleetdesk.schemas.payment import PaymentRead


class InvoiceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_number: str
    booking_id: int
    status: str

    rental_start_date: datetime
    rental_end_date: datetime
    rental_days: int
    daily_rate: Decimal
    rental_amount: Decimal

    collection_odometer: Optional[int]
    return_odometer: Optional[int]
    total_mileage: Optional[int]
    free_mileage: Optional[int]
    extra_mileage: Optional[int]
    extra_mileage_rate: Optional[Decimal]
    extra_mileage_cost: Decimal

    package_charges: Decimal
    fuel_charge: Decimal
    damage_charge: Decimal
    late_return_charge: Decimal
    other_charges: Decimal
    other_charges_description: Optional[str]

    subtotal: Decimal
    discount_amount: Decimal
    discount_reason: Optional[str]
    tax_rate: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    advance_paid: Decimal
    amount_paid: Decimal
    balance_due: Decimal

    due_date: Optional[datetime]
    issued_at: Optional[datetime]
    paid_at: Optional[datetime]
    terms: Optional[str]
    notes: Optional[str]

    payments: List[PaymentRead] = []

    created_at: datetime
    updated_at: datetime
