"""Invoice generation for completed bookings."""

import logging
from datetime import timedelta
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fleetdesk.core.errors import ConflictError, NotFoundError, PreconditionError
from fleetdesk.core.time import utc_now
from fleetdesk.db.session import atomic
from fleetdesk.models.booking import Booking, BookingStatus
from fleetdesk.models.invoice import Invoice, InvoiceSequence, InvoiceStatus
from fleetdesk.models.payment import Payment, PaymentMethod
from fleetdesk.services import notifications
from fleetdesk.services.pricing import ZERO, RentalConfig, rental_days, tax_amount, to_decimal, to_money

logger = logging.getLogger(__name__)

SEQUENCE_DIGITS = 6
MAX_ATTEMPTS = 3
ADVANCE_PAYMENT_NOTE = "Advance payment collected at booking confirmation"


def format_invoice_number(prefix: str, year: int, sequence: int) -> str:
    return f"{prefix}-{year}-{sequence:0{SEQUENCE_DIGITS}d}"


def last_invoice_sequence(db: Session, prefix: str, year: int) -> int:
    """Highest sequence already used for ``prefix`` and ``year``, or 0."""
    stem = f"{prefix}-{year}-"
    row = (
        db.query(Invoice.invoice_number)
        .filter(Invoice.invoice_number.startswith(stem, autoescape=True))
        .order_by(Invoice.invoice_number.desc())
        .first()
    )
    if row is None:
        return 0
    return int(row[0][len(stem):])


def allocate_invoice_number(db: Session, prefix: str, year: int) -> str:
    """Take the next number for ``prefix`` and ``year`` inside the caller's transaction.

    The counter is bumped with an in-database increment before anything else
    is written, so concurrent generations queue on the counter row and each
    one reads back its own value. A missing counter is seeded from the
    invoices already on file.
    """
    counter = (
        db.query(InvoiceSequence)
        .filter(InvoiceSequence.prefix == prefix, InvoiceSequence.year == year)
        .with_for_update()
        .first()
    )
    if counter is None:
        counter = InvoiceSequence(prefix=prefix, year=year, last_value=last_invoice_sequence(db, prefix, year))
        db.add(counter)
        db.flush()
    counter.last_value = InvoiceSequence.last_value + 1
    db.flush()
    db.refresh(counter)
    return format_invoice_number(prefix, year, counter.last_value)


def _booking_has_invoice(db: Session, booking_id: int) -> bool:
    return db.query(Invoice.id).filter(Invoice.booking_id == booking_id).first() is not None


def _build_invoice(db: Session, booking_id: int, actor_id: int | None, config: RentalConfig, notes: str | None) -> Invoice:
    booking = db.query(Booking).filter(Booking.id == booking_id).with_for_update().first()
    if booking is None:
        raise NotFoundError("Booking not found")
    if booking.invoice is not None:
        raise ConflictError(f"Invoice {booking.invoice.invoice_number} already exists for this booking")
    if booking.status != BookingStatus.COMPLETED:
        raise PreconditionError(
            f"Booking must be COMPLETED before generating invoice (current status: {booking.status})"
        )

    now = utc_now()
    days = booking.rental_days or rental_days(booking.start_date, booking.end_date)
    rental_amount = to_decimal(booking.rental_amount)
    subtotal = (
        rental_amount
        + to_decimal(booking.package_charges)
        + to_decimal(booking.extra_mileage_cost)
        + to_decimal(booking.fuel_charge)
        + to_decimal(booking.damage_charge)
        + to_decimal(booking.late_return_charge)
        + to_decimal(booking.other_charges)
    )
    discount = to_decimal(booking.discount_amount)
    # Rounded before the total is formed so the stored figures add up exactly.
    tax = to_money(tax_amount(subtotal - discount, config.tax_rate))
    total = to_money(subtotal - discount + tax)

    advance = ZERO
    if booking.advance_paid and to_decimal(booking.advance_amount) > 0:
        advance = to_money(booking.advance_amount)
    balance = max(Decimal("0.00"), total - advance)
    settled = advance > 0 and balance == 0
    if settled:
        status = InvoiceStatus.PAID
    elif advance > 0:
        status = InvoiceStatus.PARTIALLY_PAID
    else:
        status = InvoiceStatus.DRAFT

    invoice = Invoice(
        invoice_number=allocate_invoice_number(db, config.invoice_prefix, now.year),
        booking_id=booking.id,
        status=status,
        rental_start_date=booking.start_date,
        rental_end_date=booking.end_date,
        rental_days=days,
        daily_rate=to_money(booking.daily_rate if booking.daily_rate is not None else booking.vehicle.price_per_day),
        rental_amount=to_money(rental_amount),
        collection_odometer=booking.collection_odometer,
        return_odometer=booking.return_odometer,
        total_mileage=booking.total_mileage,
        free_mileage=booking.free_mileage,
        extra_mileage=booking.extra_mileage,
        extra_mileage_rate=booking.extra_mileage_rate,
        extra_mileage_cost=to_money(booking.extra_mileage_cost),
        package_charges=to_money(booking.package_charges),
        fuel_charge=to_money(booking.fuel_charge),
        damage_charge=to_money(booking.damage_charge),
        late_return_charge=to_money(booking.late_return_charge),
        other_charges=to_money(booking.other_charges),
        other_charges_description=booking.other_charges_note,
        subtotal=to_money(subtotal),
        discount_amount=to_money(discount),
        discount_reason=booking.discount_reason,
        tax_rate=to_decimal(config.tax_rate) if config.tax_rate > 0 else ZERO,
        tax_amount=tax,
        total_amount=total,
        advance_paid=advance,
        amount_paid=advance,
        balance_due=balance,
        due_date=now + timedelta(days=config.payment_terms_days),
        paid_at=now if settled else None,
        terms=config.invoice_terms,
        notes=notes,
        created_by=actor_id,
    )
    db.add(invoice)
    booking.invoice = invoice

    if advance > 0:
        # Back-fill the ledger so payments always sum to amount_paid.
        invoice.payments.append(
            Payment(
                amount=advance,
                method=booking.advance_payment_method or PaymentMethod.CASH,
                notes=ADVANCE_PAYMENT_NOTE,
                received_by=booking.confirmed_by or actor_id,
                paid_at=booking.advance_paid_at or booking.confirmed_at or now,
            )
        )

    # An advance covering the whole total settles the rental at once.
    booking.status = BookingStatus.PAID if settled else BookingStatus.INVOICED
    db.flush()
    return invoice


def generate_invoice_for_booking(
    db: Session,
    booking_id: int,
    actor_id: int | None,
    config: RentalConfig,
    notes: str | None = None,
) -> Invoice:
    """Create the single invoice for a COMPLETED booking.

    Numbers come from the per-prefix, per-year counter. The only expected
    collision is two callers creating the same missing counter row at once;
    the loser rolls back and retries against the row the winner committed.
    """
    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            with atomic(db):
                invoice = _build_invoice(db, booking_id, actor_id, config, notes)
            break
        except IntegrityError as exc:
            if _booking_has_invoice(db, booking_id):
                raise ConflictError("Invoice already exists for this booking") from exc
            if attempt == MAX_ATTEMPTS:
                raise ConflictError("Could not allocate a unique invoice number; please retry") from exc
            logger.warning("Invoice number collision for booking %s, retrying with a fresh sequence", booking_id)

    db.refresh(invoice)
    logger.info("Invoice %s generated for booking %s, total %s", invoice.invoice_number, booking_id, invoice.total_amount)
    notifications.emit_event(
        db,
        invoice.booking.renter_id,
        notifications.invoice_generated(
            invoice.id, invoice.invoice_number, invoice.total_amount, config.currency_symbol
        ),
    )
    return invoice


def get_invoice(db: Session, invoice_id: int, for_update: bool = False) -> Invoice:
    query = db.query(Invoice).filter(Invoice.id == invoice_id)
    if for_update:
        query = query.with_for_update()
    invoice = query.first()
    if invoice is None:
        raise NotFoundError("Invoice not found")
    return invoice


def issue_invoice(db: Session, invoice_id: int, actor_id: int | None = None) -> Invoice:
    """Mark an invoice as sent to the renter.

    A DRAFT invoice becomes ISSUED; a PARTIALLY_PAID one keeps its ledger
    status and only gets the issue stamp.
    """
    with atomic(db):
        invoice = get_invoice(db, invoice_id, for_update=True)
        if invoice.status == InvoiceStatus.PAID:
            raise PreconditionError("Invoice is already PAID and cannot be issued")
        if invoice.issued_at is not None:
            raise PreconditionError("Invoice has already been issued")
        invoice.issued_at = utc_now()
        if invoice.status == InvoiceStatus.DRAFT:
            invoice.status = InvoiceStatus.ISSUED

    logger.info("Invoice %s issued by user %s", invoice_id, actor_id)
    return invoice
