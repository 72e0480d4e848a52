"""Invoice model for completed rentals."""

from enum import StrEnum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from fleetdesk.core.time import utc_now
from fleetdesk.db.base_class import Base


class InvoiceStatus(StrEnum):
    DRAFT = "DRAFT"
    ISSUED = "ISSUED"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    invoice_number = Column(String(32), unique=True, nullable=False, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), unique=True, nullable=False)
    status = Column(String(20), nullable=False, default=InvoiceStatus.DRAFT)

    rental_start_date = Column(DateTime(timezone=True), nullable=False)
    rental_end_date = Column(DateTime(timezone=True), nullable=False)
    rental_days = Column(Integer, nullable=False)
    daily_rate = Column(Numeric(10, 2), nullable=False)
    rental_amount = Column(Numeric(12, 2), nullable=False)

    collection_odometer = Column(Integer, nullable=True)
    return_odometer = Column(Integer, nullable=True)
    total_mileage = Column(Integer, nullable=True)
    free_mileage = Column(Integer, nullable=True)
    extra_mileage = Column(Integer, nullable=True)
    extra_mileage_rate = Column(Numeric(10, 2), nullable=True)
    extra_mileage_cost = Column(Numeric(12, 2), nullable=False, default=0)

    package_charges = Column(Numeric(12, 2), nullable=False, default=0)
    fuel_charge = Column(Numeric(12, 2), nullable=False, default=0)
    damage_charge = Column(Numeric(12, 2), nullable=False, default=0)
    late_return_charge = Column(Numeric(12, 2), nullable=False, default=0)
    other_charges = Column(Numeric(12, 2), nullable=False, default=0)
    other_charges_description = Column(Text, nullable=True)

    subtotal = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    discount_reason = Column(Text, nullable=True)
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(12, 2), nullable=False, default=0)
    total_amount = Column(Numeric(12, 2), nullable=False)
    advance_paid = Column(Numeric(12, 2), nullable=False, default=0)
    amount_paid = Column(Numeric(12, 2), nullable=False, default=0)
    balance_due = Column(Numeric(12, 2), nullable=False)

    due_date = Column(DateTime(timezone=True), nullable=True)
    issued_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    terms = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    booking = relationship("Booking", back_populates="invoice")
    payments = relationship("Payment", back_populates="invoice", cascade="all, delete-orphan", order_by="Payment.id")


class InvoiceSequence(Base):
    """Last number handed out per prefix and year; the row is the allocation lock."""

    __tablename__ = "invoice_sequences"
    __table_args__ = (UniqueConstraint("prefix", "year", name="uq_invoice_sequences_prefix_year"),)

    id = Column(Integer, primary_key=True, index=True)
    prefix = Column(String(16), nullable=False)
    year = Column(Integer, nullable=False)
    last_value = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)
