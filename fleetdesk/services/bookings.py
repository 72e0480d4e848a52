"""Booking lifecycle: creation and the status transitions.

PENDING --confirm--> CONFIRMED --collect--> COLLECTED --complete--> COMPLETED
COMPLETED --generate-invoice--> INVOICED --record-payment (full)--> PAID
PENDING | CONFIRMED | COLLECTED --cancel--> CANCELLED

Every transition checks its precondition before touching any row and commits
the booking update, the vehicle availability flip and any ledger rows in a
single transaction. Notifications go out only after that commit.
"""

import logging
from decimal import Decimal
from typing import List

from sqlalchemy.orm import Session

from fleetdesk.core.errors import InvalidActionError, NotFoundError, PreconditionError
from fleetdesk.core.time import ensure_utc, utc_now
from fleetdesk.db.session import atomic
from fleetdesk.models.booking import SETTLED_STATUSES, Booking, BookingCustomCost, BookingPackage, BookingStatus
from fleetdesk.models.invoice import Invoice
from fleetdesk.models.package import Package
from fleetdesk.models.user import User
from fleetdesk.schemas.booking import (
    BookingCreate,
    CancelBooking,
    CollectBooking,
    CompleteBooking,
    ConfirmBooking,
    GenerateInvoice,
    IssueInvoice,
    RecordPayment,
)
from fleetdesk.services import notifications
from fleetdesk.services.availability import ensure_vehicle_free, set_vehicle_available
from fleetdesk.services.invoicing import generate_invoice_for_booking, issue_invoice
from fleetdesk.services.ledger import record_payment
from fleetdesk.services.pricing import (
    ZERO,
    RentalConfig,
    applicable_custom_costs,
    base_rental_amount,
    extra_mileage,
    extra_mileage_cost,
    free_mileage_allowance,
    max_package_discount,
    package_charge,
    package_charges,
    quote_rental,
    rental_days,
    to_decimal,
    to_money,
)

logger = logging.getLogger(__name__)


def get_booking(db: Session, booking_id: int, for_update: bool = False) -> Booking:
    query = db.query(Booking).filter(Booking.id == booking_id)
    if for_update:
        query = query.with_for_update()
    booking = query.first()
    if booking is None:
        raise NotFoundError("Booking not found")
    return booking


def _require_status(booking: Booking, expected: BookingStatus, message: str) -> None:
    if booking.status != expected:
        raise PreconditionError(f"{message} (current status: {booking.status})")


def _load_packages(db: Session, package_ids: List[int]) -> List[Package]:
    if not package_ids:
        return []
    unique_ids = list(dict.fromkeys(package_ids))
    packages = (
        db.query(Package)
        .filter(Package.id.in_(unique_ids), Package.is_active.is_(True))
        .all()
    )
    if len(packages) != len(unique_ids):
        raise NotFoundError("Package not found or inactive")
    by_id = {package.id: package for package in packages}
    return [by_id[package_id] for package_id in unique_ids]


def create_booking(db: Session, payload: BookingCreate, renter_id: int, config: RentalConfig) -> Booking:
    start = ensure_utc(payload.start_date)
    end = ensure_utc(payload.end_date)
    if end <= start:
        raise PreconditionError("End date must be after start date")

    renter = db.query(User).filter(User.id == renter_id).first()
    if renter is None:
        raise NotFoundError("Renter not found")

    packages = _load_packages(db, payload.package_ids)
    days = rental_days(start, end)
    for package in packages:
        if package.min_duration and days < package.min_duration:
            raise PreconditionError(f"Minimum duration for package {package.name} is {package.min_duration} days")
        if package.max_duration and days > package.max_duration:
            raise PreconditionError(f"Maximum duration for package {package.name} is {package.max_duration} days")

    with atomic(db):
        vehicle = ensure_vehicle_free(db, payload.vehicle_id, start, end)

        custom_costs = []
        for package in packages:
            custom_costs.extend(applicable_custom_costs(package, payload.selected_custom_cost_ids))
        extras = sum((to_decimal(cost.price) for cost in custom_costs), ZERO)

        quote = quote_rental(vehicle.price_per_day, start, end, packages, config, extra_costs=extras)
        booking = Booking(
            renter_id=renter.id,
            vehicle_id=vehicle.id,
            start_date=start,
            end_date=end,
            status=BookingStatus.PENDING,
            pickup_location=payload.pickup_location or vehicle.location,
            dropoff_location=payload.dropoff_location or vehicle.location,
            confirmation_notes=payload.notes,
            total_price=quote.estimated_total,
            primary_package_id=packages[0].id if packages else None,
            custom_costs_total=to_money(extras) if custom_costs else None,
        )
        for package in packages:
            booking.packages.append(
                BookingPackage(
                    package_id=package.id,
                    package_type=package.type,
                    base_price=package.base_price,
                    price_per_day=package.price_per_day,
                    price_per_hour=package.price_per_hour,
                    discount=package.discount,
                    price=to_money(package_charge(package, days)),
                )
            )
        for cost in custom_costs:
            booking.custom_costs.append(
                BookingCustomCost(package_custom_cost_id=cost.id, name=cost.name, price=cost.price)
            )
        db.add(booking)
        db.flush()

    db.refresh(booking)
    logger.info("Booking %s created for vehicle %s", booking.id, booking.vehicle_id)
    notifications.emit_event(db, booking.renter_id, notifications.booking_created(booking.id, vehicle.display_name))
    return booking


def confirm_booking(
    db: Session, booking_id: int, payload: ConfirmBooking, actor_id: int, config: RentalConfig
) -> Booking:
    with atomic(db):
        booking = get_booking(db, booking_id, for_update=True)
        _require_status(booking, BookingStatus.PENDING, "Booking can only be confirmed from PENDING status")
        ensure_vehicle_free(db, booking.vehicle_id, booking.start_date, booking.end_date, exclude_booking_id=booking.id)

        now = utc_now()
        booking.status = BookingStatus.CONFIRMED
        booking.confirmed_at = now
        booking.confirmed_by = actor_id
        booking.confirmation_notes = payload.confirmation_notes or booking.confirmation_notes
        booking.advance_amount = payload.advance_amount
        booking.advance_paid = payload.advance_paid
        booking.advance_paid_at = now if payload.advance_paid else None
        booking.advance_payment_method = payload.advance_payment_method

        planned_days = rental_days(booking.start_date, booking.end_date)
        if payload.free_mileage is not None:
            booking.free_mileage = payload.free_mileage
        else:
            booking.free_mileage = free_mileage_allowance(planned_days, config.free_mileage_per_day)
        if payload.extra_mileage_rate is not None:
            booking.extra_mileage_rate = payload.extra_mileage_rate
        else:
            booking.extra_mileage_rate = config.extra_mileage_rate

    logger.info("Booking %s confirmed by user %s", booking_id, actor_id)
    start_label = ensure_utc(booking.start_date).strftime("%Y-%m-%d")
    notifications.emit_event(
        db,
        booking.renter_id,
        notifications.booking_confirmed(booking.id, booking.vehicle.display_name, start_label),
    )
    return booking


def collect_booking(
    db: Session, booking_id: int, payload: CollectBooking, actor_id: int, config: RentalConfig
) -> Booking:
    with atomic(db):
        booking = get_booking(db, booking_id, for_update=True)
        _require_status(booking, BookingStatus.CONFIRMED, "Booking must be CONFIRMED before collection")

        booking.status = BookingStatus.COLLECTED
        booking.collected_at = utc_now()
        booking.collected_by = actor_id
        booking.collection_odometer = payload.collection_odometer
        booking.collection_fuel_level = payload.collection_fuel_level or "FULL"
        booking.collection_notes = payload.collection_notes
        set_vehicle_available(db, booking.vehicle_id, False)

    logger.info("Booking %s collected at odometer %s", booking_id, payload.collection_odometer)
    return booking


def complete_booking(
    db: Session, booking_id: int, payload: CompleteBooking, actor_id: int, config: RentalConfig
) -> Booking:
    """Close the rental and recompute every charge from the actual period."""
    with atomic(db):
        booking = get_booking(db, booking_id, for_update=True)
        _require_status(booking, BookingStatus.COLLECTED, "Booking must be COLLECTED before completion")

        collection_odometer = booking.collection_odometer or 0
        if payload.return_odometer < collection_odometer:
            raise PreconditionError(
                f"Return odometer ({payload.return_odometer}) cannot be lower than "
                f"collection odometer ({collection_odometer})"
            )

        now = utc_now()
        actual_start = ensure_utc(payload.actual_start or booking.collected_at or booking.start_date)
        actual_end = ensure_utc(payload.actual_end or now)
        if actual_end <= actual_start:
            raise PreconditionError("Actual return time must be after the actual collection time")

        days = rental_days(actual_start, actual_end)
        daily_rate = to_decimal(booking.vehicle.price_per_day)
        rental_amount = base_rental_amount(daily_rate, days, max_package_discount(booking.packages))

        per_day = payload.free_mileage_per_day
        if per_day is None:
            per_day = config.free_mileage_per_day
        free_mileage = free_mileage_allowance(days, per_day)
        total_mileage = payload.return_odometer - collection_odometer
        rate = booking.extra_mileage_rate if booking.extra_mileage_rate is not None else config.extra_mileage_rate
        over = extra_mileage(total_mileage, free_mileage)
        over_cost = extra_mileage_cost(total_mileage, free_mileage, rate)

        add_ons = package_charges(booking.packages, days)
        add_ons += sum((to_decimal(cost.price) for cost in booking.custom_costs), ZERO)

        supplemental = (
            payload.fuel_charge + payload.damage_charge + payload.late_return_charge + payload.other_charges
        )
        gross = rental_amount + over_cost + supplemental + add_ons
        if payload.discount_amount > gross:
            raise PreconditionError("Discount cannot exceed the total rental charges")
        final_amount = gross - payload.discount_amount
        advance = to_decimal(booking.advance_amount) if booking.advance_paid else Decimal("0")

        booking.status = BookingStatus.COMPLETED
        booking.start_date = actual_start
        booking.end_date = actual_end
        booking.returned_at = now
        booking.returned_by = actor_id
        booking.return_odometer = payload.return_odometer
        booking.return_fuel_level = payload.return_fuel_level
        booking.return_notes = payload.return_notes
        booking.rental_days = days
        booking.daily_rate = daily_rate
        booking.rental_amount = to_money(rental_amount)
        booking.package_charges = to_money(add_ons)
        booking.free_mileage = free_mileage
        booking.extra_mileage_rate = rate
        booking.total_mileage = total_mileage
        booking.extra_mileage = over
        booking.extra_mileage_cost = to_money(over_cost)
        booking.fuel_charge = to_money(payload.fuel_charge)
        booking.damage_charge = to_money(payload.damage_charge)
        booking.late_return_charge = to_money(payload.late_return_charge)
        booking.other_charges = to_money(payload.other_charges)
        booking.other_charges_note = payload.other_charges_note
        booking.discount_amount = to_money(payload.discount_amount)
        booking.discount_reason = payload.discount_reason
        booking.final_amount = to_money(final_amount)
        booking.balance_due = to_money(max(ZERO, final_amount - advance))
        set_vehicle_available(db, booking.vehicle_id, True)

    logger.info("Booking %s completed: %s days, final amount %s", booking_id, days, booking.final_amount)
    notifications.emit_event(
        db, booking.renter_id, notifications.rental_completed(booking.id, booking.vehicle.display_name)
    )
    return booking


def cancel_booking(
    db: Session, booking_id: int, payload: CancelBooking, actor_id: int, config: RentalConfig
) -> Booking:
    with atomic(db):
        booking = get_booking(db, booking_id, for_update=True)
        if booking.status in SETTLED_STATUSES:
            raise PreconditionError(
                f"Cannot cancel a booking that is {booking.status}; only PENDING, CONFIRMED or COLLECTED bookings can be cancelled"
            )
        if booking.status == BookingStatus.CANCELLED:
            raise PreconditionError("Booking is already CANCELLED")

        was_collected = booking.status == BookingStatus.COLLECTED
        booking.status = BookingStatus.CANCELLED
        booking.cancelled_at = utc_now()
        booking.cancelled_by = actor_id
        booking.cancellation_reason = payload.reason
        if was_collected:
            set_vehicle_available(db, booking.vehicle_id, True)

    logger.info("Booking %s cancelled by user %s", booking_id, actor_id)
    notifications.emit_event(
        db, booking.renter_id, notifications.booking_cancelled(booking.id, booking.vehicle.display_name)
    )
    return booking


def _generate_invoice(
    db: Session, booking_id: int, payload: GenerateInvoice, actor_id: int, config: RentalConfig
) -> Invoice:
    overrides = payload.model_dump(include={"tax_rate", "invoice_prefix", "payment_terms_days"}, exclude_none=True)
    if overrides:
        config = config.model_copy(update=overrides)
    return generate_invoice_for_booking(db, booking_id, actor_id=actor_id, config=config, notes=payload.notes)


def _invoice_of(db: Session, booking_id: int) -> Invoice:
    booking = get_booking(db, booking_id)
    if booking.invoice is None:
        raise PreconditionError("No invoice exists for this booking")
    return booking.invoice


def _record_payment(
    db: Session, booking_id: int, payload: RecordPayment, actor_id: int, config: RentalConfig
) -> Invoice:
    invoice = _invoice_of(db, booking_id)
    return record_payment(
        db,
        invoice.id,
        payload.amount,
        payload.method,
        reference=payload.reference,
        notes=payload.notes,
        actor_id=actor_id,
        config=config,
    )


def _issue_invoice(
    db: Session, booking_id: int, payload: IssueInvoice, actor_id: int, config: RentalConfig
) -> Invoice:
    invoice = _invoice_of(db, booking_id)
    return issue_invoice(db, invoice.id, actor_id=actor_id)


_ACTION_HANDLERS = {
    ConfirmBooking: confirm_booking,
    CollectBooking: collect_booking,
    CompleteBooking: complete_booking,
    CancelBooking: cancel_booking,
    GenerateInvoice: _generate_invoice,
    RecordPayment: _record_payment,
    IssueInvoice: _issue_invoice,
}


def apply_booking_action(db: Session, booking_id: int, action, actor_id: int, config: RentalConfig):
    """Run one workflow action and return the booking with its invoice (if any)."""
    handler = _ACTION_HANDLERS.get(type(action))
    if handler is None:
        raise InvalidActionError(f"Invalid action: {getattr(action, 'action', type(action).__name__)}")
    handler(db, booking_id, action, actor_id, config)
    booking = get_booking(db, booking_id)
    return booking, booking.invoice
