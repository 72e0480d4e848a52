"""Booking model and its package/custom-cost snapshots."""

from enum import StrEnum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from fleetdesk.core.time import utc_now
from fleetdesk.db.base_class import Base


class BookingStatus(StrEnum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COLLECTED = "COLLECTED"
    COMPLETED = "COMPLETED"
    INVOICED = "INVOICED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


# Bookings in these states hold the vehicle for their period.
ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.COLLECTED)
# Settlement has begun; the booking can no longer be cancelled.
SETTLED_STATUSES = (BookingStatus.COMPLETED, BookingStatus.INVOICED, BookingStatus.PAID)


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (CheckConstraint("end_date > start_date", name="ck_bookings_period"),)

    id = Column(Integer, primary_key=True, index=True)
    renter_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False, index=True)

    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), nullable=False, default=BookingStatus.PENDING, index=True)
    pickup_location = Column(String(255), nullable=True)
    dropoff_location = Column(String(255), nullable=True)

    # Nominal estimate, set at creation
    total_price = Column(Numeric(12, 2), nullable=False)
    primary_package_id = Column(Integer, ForeignKey("packages.id"), nullable=True)
    custom_costs_total = Column(Numeric(12, 2), nullable=True)

    # confirm
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    confirmation_notes = Column(Text, nullable=True)
    advance_amount = Column(Numeric(12, 2), nullable=True)
    advance_paid = Column(Boolean, nullable=False, default=False)
    advance_paid_at = Column(DateTime(timezone=True), nullable=True)
    advance_payment_method = Column(String(20), nullable=True)
    free_mileage = Column(Integer, nullable=True)
    extra_mileage_rate = Column(Numeric(10, 2), nullable=True)

    # collect
    collected_at = Column(DateTime(timezone=True), nullable=True)
    collected_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    collection_odometer = Column(Integer, nullable=True)
    collection_fuel_level = Column(String(20), nullable=True)
    collection_notes = Column(Text, nullable=True)

    # complete
    returned_at = Column(DateTime(timezone=True), nullable=True)
    returned_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    return_odometer = Column(Integer, nullable=True)
    return_fuel_level = Column(String(20), nullable=True)
    return_notes = Column(Text, nullable=True)
    rental_days = Column(Integer, nullable=True)
    daily_rate = Column(Numeric(10, 2), nullable=True)
    rental_amount = Column(Numeric(12, 2), nullable=True)
    package_charges = Column(Numeric(12, 2), nullable=True)
    total_mileage = Column(Integer, nullable=True)
    extra_mileage = Column(Integer, nullable=True)
    extra_mileage_cost = Column(Numeric(12, 2), nullable=True)
    fuel_charge = Column(Numeric(12, 2), nullable=True)
    damage_charge = Column(Numeric(12, 2), nullable=True)
    late_return_charge = Column(Numeric(12, 2), nullable=True)
    other_charges = Column(Numeric(12, 2), nullable=True)
    other_charges_note = Column(Text, nullable=True)
    discount_amount = Column(Numeric(12, 2), nullable=True)
    discount_reason = Column(Text, nullable=True)
    final_amount = Column(Numeric(12, 2), nullable=True)
    balance_due = Column(Numeric(12, 2), nullable=True)

    # cancel
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    renter = relationship("User", back_populates="bookings", foreign_keys=[renter_id])
    vehicle = relationship("Vehicle", back_populates="bookings")
    packages = relationship("BookingPackage", back_populates="booking", cascade="all, delete-orphan")
    custom_costs = relationship("BookingCustomCost", back_populates="booking", cascade="all, delete-orphan")
    invoice = relationship("Invoice", back_populates="booking", uselist=False)


class BookingPackage(Base):
    """A package selected on a booking, with its pricing frozen at booking time."""

    __tablename__ = "booking_packages"
    __table_args__ = (UniqueConstraint("booking_id", "package_id", name="uq_booking_packages_booking_package"),)

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    package_id = Column(Integer, ForeignKey("packages.id"), nullable=False)
    package_type = Column(String(20), nullable=False)
    base_price = Column(Numeric(10, 2), nullable=True)
    price_per_day = Column(Numeric(10, 2), nullable=True)
    price_per_hour = Column(Numeric(10, 2), nullable=True)
    discount = Column(Numeric(5, 2), nullable=True)
    # Charge for the planned period
    price = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    booking = relationship("Booking", back_populates="packages")
    package = relationship("Package")


class BookingCustomCost(Base):
    __tablename__ = "booking_custom_costs"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    package_custom_cost_id = Column(Integer, ForeignKey("package_custom_costs.id"), nullable=False)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)

    booking = relationship("Booking", back_populates="custom_costs")
