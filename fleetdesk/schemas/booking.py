"""Booking schemas and the typed workflow action payloads."""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from fleetdesk.core.time import ensure_utc
from fleetdesk.models.payment import PaymentMethod
from fleetdesk.schemas.invoice import InvoiceRead


class BookingCreate(BaseModel):
    vehicle_id: int
    start_date: datetime
    end_date: datetime
    package_ids: List[int] = Field(default_factory=list)
    selected_custom_cost_ids: List[int] = Field(default_factory=list)
    pickup_location: Optional[str] = None
    dropoff_location: Optional[str] = None
    notes: Optional[str] = None
    # Staff may book on behalf of a renter
    renter_id: Optional[int] = None

    @model_validator(mode="after")
    def check_period(self):
        if ensure_utc(self.end_date) <= ensure_utc(self.start_date):
            raise ValueError("End date must be after start date")
        return self


class BookingPackageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    package_id: int
    package_type: str
    base_price: Optional[Decimal] = None
    price_per_day: Optional[Decimal] = None
    price_per_hour: Optional[Decimal] = None
    discount: Optional[Decimal] = None
    price: Decimal


class BookingCustomCostRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    package_custom_cost_id: int
    name: str
    price: Decimal


class BookingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    renter_id: int
    vehicle_id: int
    status: str
    start_date: datetime
    end_date: datetime
    pickup_location: Optional[str] = None
    dropoff_location: Optional[str] = None
    total_price: Decimal
    custom_costs_total: Optional[Decimal] = None

    confirmed_at: Optional[datetime] = None
    confirmed_by: Optional[int] = None
    confirmation_notes: Optional[str] = None
    advance_amount: Optional[Decimal] = None
    advance_paid: bool
    advance_paid_at: Optional[datetime] = None
    advance_payment_method: Optional[str] = None
    free_mileage: Optional[int] = None
    extra_mileage_rate: Optional[Decimal] = None

    collected_at: Optional[datetime] = None
    collected_by: Optional[int] = None
    collection_odometer: Optional[int] = None
    collection_fuel_level: Optional[str] = None
    collection_notes: Optional[str] = None

    returned_at: Optional[datetime] = None
    returned_by: Optional[int] = None
    return_odometer: Optional[int] = None
    return_fuel_level: Optional[str] = None
    return_notes: Optional[str] = None
    rental_days: Optional[int] = None
    daily_rate: Optional[Decimal] = None
    rental_amount: Optional[Decimal] = None
    package_charges: Optional[Decimal] = None
    total_mileage: Optional[int] = None
    extra_mileage: Optional[int] = None
    extra_mileage_cost: Optional[Decimal] = None
    fuel_charge: Optional[Decimal] = None
    damage_charge: Optional[Decimal] = None
    late_return_charge: Optional[Decimal] = None
    other_charges: Optional[Decimal] = None
    other_charges_note: Optional[str] = None
    discount_amount: Optional[Decimal] = None
    discount_reason: Optional[str] = None
    final_amount: Optional[Decimal] = None
    balance_due: Optional[Decimal] = None

    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    packages: List[BookingPackageRead] = Field(default_factory=list)
    custom_costs: List[BookingCustomCostRead] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class ConfirmBooking(BaseModel):
    model_config = ConfigDict(extra="forbid")

    action: Literal["confirm"]
    advance_amount: Optional[Decimal] = Field(default=None, ge=0)
    advance_paid: bool = False
    advance_payment_method: Optional[PaymentMethod] = None
    confirmation_notes: Optional[str] = None
    # Total allowance for the planned period; defaults to days x per-day allowance
    free_mileage: Optional[int] = Field(default=None, ge=0)
    extra_mileage_rate: Optional[Decimal] = Field(default=None, ge=0)


class CollectBooking(BaseModel):
    model_config = ConfigDict(extra="forbid")

    action: Literal["collect"]
    collection_odometer: int = Field(ge=0)
    collection_fuel_level: str = "FULL"
    collection_notes: Optional[str] = None


class CompleteBooking(BaseModel):
    model_config = ConfigDict(extra="forbid")

    action: Literal["complete"]
    return_odometer: int = Field(ge=0)
    return_fuel_level: Optional[str] = None
    return_notes: Optional[str] = None
    actual_start: Optional[datetime] = None
    actual_end: Optional[datetime] = None
    fuel_charge: Decimal = Field(default=Decimal("0"), ge=0)
    damage_charge: Decimal = Field(default=Decimal("0"), ge=0)
    late_return_charge: Decimal = Field(default=Decimal("0"), ge=0)
    other_charges: Decimal = Field(default=Decimal("0"), ge=0)
    other_charges_note: Optional[str] = None
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)
    discount_reason: Optional[str] = None
    free_mileage_per_day: Optional[int] = Field(default=None, ge=0)


class CancelBooking(BaseModel):
    model_config = ConfigDict(extra="forbid")

    action: Literal["cancel"]
    reason: Optional[str] = None


class GenerateInvoice(BaseModel):
    model_config = ConfigDict(extra="forbid")

    action: Literal["generate-invoice"]
    tax_rate: Optional[Decimal] = Field(default=None, ge=0)
    invoice_prefix: Optional[str] = Field(default=None, min_length=1, max_length=16, pattern=r"^[A-Za-z0-9_]+$")
    payment_terms_days: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None


class RecordPayment(BaseModel):
    model_config = ConfigDict(extra="forbid")

    action: Literal["record-payment"]
    amount: Decimal = Field(gt=0)
    method: PaymentMethod
    reference: Optional[str] = None
    notes: Optional[str] = None


class IssueInvoice(BaseModel):
    model_config = ConfigDict(extra="forbid")

    action: Literal["issue-invoice"]


BookingAction = Annotated[
    Union[
        ConfirmBooking,
        CollectBooking,
        CompleteBooking,
        CancelBooking,
        GenerateInvoice,
        RecordPayment,
        IssueInvoice,
    ],
    Field(discriminator="action"),
]


class WorkflowResult(BaseModel):
    booking: BookingRead
    invoice: Optional[InvoiceRead] = None
