import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from fleetdesk.core.errors import ConflictError, NotFoundError, PreconditionError
from fleetdesk.core.time import ensure_utc, utc_now
from fleetdesk.db.base import Base
from fleetdesk.db.session import SessionLocal, engine
from fleetdesk.models.booking import Booking, BookingStatus
from fleetdesk.models.invoice import Invoice, InvoiceSequence, InvoiceStatus
from fleetdesk.models.payment import Payment
from fleetdesk.models.user import User, UserRole
from fleetdesk.models.vehicle import Vehicle
from fleetdesk.schemas.booking import BookingCreate, CollectBooking, CompleteBooking, ConfirmBooking, GenerateInvoice
from fleetdesk.services import invoicing
from fleetdesk.services.bookings import (
    apply_booking_action,
    collect_booking,
    complete_booking,
    confirm_booking,
    create_booking,
)
from fleetdesk.services.invoicing import (
    ADVANCE_PAYMENT_NOTE,
    format_invoice_number,
    generate_invoice_for_booking,
    issue_invoice,
)
from fleetdesk.services.ledger import record_payment
from fleetdesk.services.pricing import RentalConfig

CONFIG = RentalConfig(free_mileage_per_day=50, extra_mileage_rate=Decimal("20"))
START = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


def _seed(db):
    staff = User(email="staff@example.com", role=UserRole.MANAGER)
    renter = User(email="renter@example.com")
    vehicle = Vehicle(name="Axio", brand="Toyota", model="Axio", price_per_day=Decimal("5000.00"))
    db.add_all([staff, renter, vehicle])
    db.commit()
    for obj in (staff, renter, vehicle):
        db.refresh(obj)
    return staff, renter, vehicle


def _completed_booking(db, staff, renter, vehicle, week=0, return_odometer=1100, confirm=None, **complete_fields):
    """Drive a two-day booking to COMPLETED; ``week`` shifts the period so bookings never overlap."""
    start = START + timedelta(weeks=week)
    end = start + timedelta(days=2)
    booking = create_booking(
        db, BookingCreate(vehicle_id=vehicle.id, start_date=start, end_date=end), renter_id=renter.id, config=CONFIG
    )
    confirm_booking(db, booking.id, ConfirmBooking(action="confirm", **(confirm or {})), staff.id, CONFIG)
    collect_booking(db, booking.id, CollectBooking(action="collect", collection_odometer=1000), staff.id, CONFIG)
    complete_booking(
        db,
        booking.id,
        CompleteBooking(
            action="complete",
            return_odometer=return_odometer,
            actual_start=start,
            actual_end=end,
            **complete_fields,
        ),
        staff.id,
        CONFIG,
    )
    return booking


def test_format_invoice_number_pads_sequence():
    assert format_invoice_number("INV", 2024, 1) == "INV-2024-000001"
    assert format_invoice_number("RNT", 2025, 123456) == "RNT-2025-123456"


def test_generate_invoice_snapshots_completed_booking():
    db = SessionLocal()
    try:
        staff, renter, vehicle = _seed(db)
        booking = _completed_booking(db, staff, renter, vehicle, return_odometer=1250)

        invoice = generate_invoice_for_booking(db, booking.id, actor_id=staff.id, config=CONFIG, notes="Thanks")
        db.refresh(booking)

        assert invoice.invoice_number == f"INV-{utc_now().year}-000001"
        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.booking_id == booking.id
        assert ensure_utc(invoice.rental_start_date) == START
        assert invoice.rental_days == 2
        assert invoice.daily_rate == Decimal("5000.00")
        assert invoice.rental_amount == Decimal("10000.00")
        assert invoice.total_mileage == 250
        assert invoice.extra_mileage == 150
        assert invoice.extra_mileage_cost == Decimal("3000.00")
        assert invoice.subtotal == Decimal("13000.00")
        assert invoice.tax_amount == Decimal("0.00")
        assert invoice.total_amount == Decimal("13000.00")
        assert invoice.amount_paid == Decimal("0.00")
        assert invoice.balance_due == Decimal("13000.00")
        assert invoice.notes == "Thanks"
        assert invoice.created_by == staff.id
        assert invoice.payments == []
        assert ensure_utc(invoice.due_date) > utc_now() + timedelta(days=6)
        assert booking.status == BookingStatus.INVOICED
    finally:
        db.close()


def test_invoice_numbers_are_sequential_per_prefix():
    db = SessionLocal()
    try:
        staff, renter, vehicle = _seed(db)
        year = utc_now().year
        numbers = []
        for week in range(3):
            booking = _completed_booking(db, staff, renter, vehicle, week=week)
            numbers.append(generate_invoice_for_booking(db, booking.id, actor_id=staff.id, config=CONFIG).invoice_number)

        assert numbers == [f"INV-{year}-000001", f"INV-{year}-000002", f"INV-{year}-000003"]

        booking = _completed_booking(db, staff, renter, vehicle, week=3)
        other = CONFIG.model_copy(update={"invoice_prefix": "RNT"})
        invoice = generate_invoice_for_booking(db, booking.id, actor_id=staff.id, config=other)
        assert invoice.invoice_number == f"RNT-{year}-000001"
    finally:
        db.close()


def test_second_generation_for_same_booking_conflicts():
    db = SessionLocal()
    try:
        staff, renter, vehicle = _seed(db)
        booking = _completed_booking(db, staff, renter, vehicle)
        first = generate_invoice_for_booking(db, booking.id, actor_id=staff.id, config=CONFIG)
        first_id, first_number = first.id, first.invoice_number

        with pytest.raises(ConflictError, match="already exists"):
            generate_invoice_for_booking(db, booking.id, actor_id=staff.id, config=CONFIG)

        invoices = db.query(Invoice).all()
        assert len(invoices) == 1
        assert invoices[0].id == first_id
        assert invoices[0].invoice_number == first_number
    finally:
        db.close()


def test_generate_invoice_requires_completed_booking():
    db = SessionLocal()
    try:
        staff, renter, vehicle = _seed(db)
        booking = create_booking(
            db,
            BookingCreate(vehicle_id=vehicle.id, start_date=START, end_date=START + timedelta(days=1)),
            renter_id=renter.id,
            config=CONFIG,
        )

        with pytest.raises(PreconditionError, match="must be COMPLETED"):
            generate_invoice_for_booking(db, booking.id, actor_id=staff.id, config=CONFIG)
        assert db.query(Invoice).count() == 0
        db.refresh(booking)
        assert booking.status == BookingStatus.PENDING
    finally:
        db.close()


def test_generate_invoice_for_missing_booking_is_not_found():
    db = SessionLocal()
    try:
        with pytest.raises(NotFoundError):
            generate_invoice_for_booking(db, 777, actor_id=None, config=CONFIG)
    finally:
        db.close()


def test_paid_advance_is_backfilled_as_payment():
    db = SessionLocal()
    try:
        staff, renter, vehicle = _seed(db)
        booking = _completed_booking(
            db,
            staff,
            renter,
            vehicle,
            confirm={"advance_amount": Decimal("2000"), "advance_paid": True, "advance_payment_method": "CARD"},
        )

        invoice = generate_invoice_for_booking(db, booking.id, actor_id=staff.id, config=CONFIG)
        db.refresh(booking)

        assert invoice.status == InvoiceStatus.PARTIALLY_PAID
        assert invoice.advance_paid == Decimal("2000.00")
        assert invoice.amount_paid == Decimal("2000.00")
        assert invoice.balance_due == Decimal("8000.00")
        assert len(invoice.payments) == 1
        payment = invoice.payments[0]
        assert payment.amount == Decimal("2000.00")
        assert payment.method == "CARD"
        assert payment.notes == ADVANCE_PAYMENT_NOTE
        assert payment.received_by == staff.id
        assert payment.paid_at == booking.advance_paid_at
        assert sum(p.amount for p in invoice.payments) == invoice.amount_paid
    finally:
        db.close()


def test_backfilled_advance_defaults_to_cash():
    db = SessionLocal()
    try:
        staff, renter, vehicle = _seed(db)
        booking = _completed_booking(
            db, staff, renter, vehicle, confirm={"advance_amount": Decimal("1500"), "advance_paid": True}
        )

        invoice = generate_invoice_for_booking(db, booking.id, actor_id=staff.id, config=CONFIG)
        assert invoice.payments[0].method == "CASH"
    finally:
        db.close()


def test_unpaid_advance_is_not_credited():
    db = SessionLocal()
    try:
        staff, renter, vehicle = _seed(db)
        booking = _completed_booking(
            db, staff, renter, vehicle, confirm={"advance_amount": Decimal("2000"), "advance_paid": False}
        )

        invoice = generate_invoice_for_booking(db, booking.id, actor_id=staff.id, config=CONFIG)

        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.amount_paid == Decimal("0.00")
        assert invoice.balance_due == Decimal("10000.00")
        assert db.query(Payment).count() == 0
    finally:
        db.close()


def test_invoice_totals_add_up_with_tax_and_discount():
    db = SessionLocal()
    try:
        staff, renter, vehicle = _seed(db)
        booking = _completed_booking(
            db,
            staff,
            renter,
            vehicle,
            fuel_charge=Decimal("1200"),
            damage_charge=Decimal("333.33"),
            discount_amount=Decimal("500"),
            discount_reason="Returning customer",
        )
        taxed = CONFIG.model_copy(update={"tax_rate": Decimal("8")})

        invoice = generate_invoice_for_booking(db, booking.id, actor_id=staff.id, config=taxed)

        assert invoice.subtotal == Decimal("11533.33")
        assert invoice.discount_amount == Decimal("500.00")
        assert invoice.tax_rate == Decimal("8.00")
        assert invoice.tax_amount == Decimal("882.67")
        assert invoice.total_amount == Decimal("11916.00")
        assert invoice.total_amount == invoice.subtotal - invoice.discount_amount + invoice.tax_amount
        assert invoice.balance_due == invoice.total_amount - invoice.amount_paid
    finally:
        db.close()


def test_generate_invoice_retries_after_number_collision(monkeypatch):
    db = SessionLocal()
    try:
        staff, renter, vehicle = _seed(db)
        first = _completed_booking(db, staff, renter, vehicle, week=0)
        second = _completed_booking(db, staff, renter, vehicle, week=1)
        generate_invoice_for_booking(db, first.id, actor_id=staff.id, config=CONFIG)
        # Invoices on file but no counter row yet, as before counters existed
        db.query(InvoiceSequence).delete()
        db.commit()

        real_sequence = invoicing.last_invoice_sequence
        calls = []

        def stale_then_fresh(session, prefix, year):
            calls.append(prefix)
            if len(calls) == 1:
                return 0
            return real_sequence(session, prefix, year)

        monkeypatch.setattr(invoicing, "last_invoice_sequence", stale_then_fresh)
        invoice = generate_invoice_for_booking(db, second.id, actor_id=staff.id, config=CONFIG)

        assert len(calls) == 2
        assert invoice.invoice_number == f"INV-{utc_now().year}-000002"
        assert invoice.booking_id == second.id
        counter = db.query(InvoiceSequence).one()
        assert counter.last_value == 2
    finally:
        db.close()


def test_generate_invoice_gives_up_after_repeated_collisions(monkeypatch):
    db = SessionLocal()
    try:
        staff, renter, vehicle = _seed(db)
        first = _completed_booking(db, staff, renter, vehicle, week=0)
        second = _completed_booking(db, staff, renter, vehicle, week=1)
        generate_invoice_for_booking(db, first.id, actor_id=staff.id, config=CONFIG)
        db.query(InvoiceSequence).delete()
        db.commit()

        monkeypatch.setattr(invoicing, "last_invoice_sequence", lambda session, prefix, year: 0)
        with pytest.raises(ConflictError, match="unique invoice number"):
            generate_invoice_for_booking(db, second.id, actor_id=staff.id, config=CONFIG)

        db.expire_all()
        stored = db.query(Booking).filter(Booking.id == second.id).one()
        assert stored.status == BookingStatus.COMPLETED
        assert stored.invoice is None
        assert db.query(Invoice).count() == 1
        assert db.query(InvoiceSequence).count() == 0
    finally:
        db.close()


def test_counter_is_seeded_from_invoices_on_file():
    db = SessionLocal()
    try:
        staff, renter, vehicle = _seed(db)
        year = utc_now().year
        for week in range(2):
            booking = _completed_booking(db, staff, renter, vehicle, week=week)
            generate_invoice_for_booking(db, booking.id, actor_id=staff.id, config=CONFIG)
        db.query(InvoiceSequence).delete()
        db.commit()

        booking = _completed_booking(db, staff, renter, vehicle, week=2)
        invoice = generate_invoice_for_booking(db, booking.id, actor_id=staff.id, config=CONFIG)

        assert invoice.invoice_number == f"INV-{year}-000003"
    finally:
        db.close()


def test_concurrent_generation_hands_out_distinct_gap_free_numbers():
    workers = 8
    db = SessionLocal()
    try:
        staff, renter, vehicle = _seed(db)
        booking_ids = [_completed_booking(db, staff, renter, vehicle, week=week).id for week in range(workers)]
        staff_id = staff.id
    finally:
        db.close()

    barrier = threading.Barrier(workers)
    guard = threading.Lock()
    numbers, errors = [], []

    def generate(booking_id):
        session = SessionLocal()
        try:
            barrier.wait()
            invoice = generate_invoice_for_booking(session, booking_id, actor_id=staff_id, config=CONFIG)
            with guard:
                numbers.append(invoice.invoice_number)
        except Exception as exc:  # collected and asserted below
            with guard:
                errors.append(f"{type(exc).__name__}: {exc}")
        finally:
            session.close()

    threads = [threading.Thread(target=generate, args=(booking_id,)) for booking_id in booking_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    year = utc_now().year
    assert errors == []
    assert sorted(numbers) == [format_invoice_number("INV", year, n) for n in range(1, workers + 1)]

    db = SessionLocal()
    try:
        assert db.query(Invoice).count() == workers
        assert {i.booking_id for i in db.query(Invoice).all()} == set(booking_ids)
        assert db.query(InvoiceSequence).one().last_value == workers
    finally:
        db.close()


def test_prefix_wildcards_do_not_match_other_prefixes():
    db = SessionLocal()
    try:
        staff, renter, vehicle = _seed(db)
        year = utc_now().year
        booking = _completed_booking(db, staff, renter, vehicle, week=0)
        generate_invoice_for_booking(
            db, booking.id, actor_id=staff.id, config=CONFIG.model_copy(update={"invoice_prefix": "AXB"})
        )

        assert invoicing.last_invoice_sequence(db, "AXB", year) == 1
        assert invoicing.last_invoice_sequence(db, "A_B", year) == 0

        booking = _completed_booking(db, staff, renter, vehicle, week=1)
        invoice = generate_invoice_for_booking(
            db, booking.id, actor_id=staff.id, config=CONFIG.model_copy(update={"invoice_prefix": "A_B"})
        )
        assert invoice.invoice_number == f"A_B-{year}-000001"
    finally:
        db.close()


def test_advance_covering_total_settles_invoice_and_booking():
    db = SessionLocal()
    try:
        staff, renter, vehicle = _seed(db)
        booking = _completed_booking(
            db, staff, renter, vehicle, confirm={"advance_amount": Decimal("10000"), "advance_paid": True}
        )

        invoice = generate_invoice_for_booking(db, booking.id, actor_id=staff.id, config=CONFIG)
        db.refresh(booking)

        assert invoice.status == InvoiceStatus.PAID
        assert invoice.paid_at is not None
        assert invoice.amount_paid == Decimal("10000.00")
        assert invoice.balance_due == Decimal("0.00")
        assert booking.status == BookingStatus.PAID
        with pytest.raises(PreconditionError, match="already PAID"):
            record_payment(db, invoice.id, Decimal("0.01"), "CASH", actor_id=staff.id)
        db.refresh(invoice)
        assert sum(p.amount for p in invoice.payments) == invoice.total_amount
    finally:
        db.close()


def test_advance_above_total_also_settles():
    db = SessionLocal()
    try:
        staff, renter, vehicle = _seed(db)
        booking = _completed_booking(
            db, staff, renter, vehicle, confirm={"advance_amount": Decimal("12000"), "advance_paid": True}
        )
        db.refresh(booking)
        assert booking.balance_due == Decimal("0.00")

        invoice = generate_invoice_for_booking(db, booking.id, actor_id=staff.id, config=CONFIG)

        assert invoice.status == InvoiceStatus.PAID
        assert invoice.balance_due == Decimal("0.00")
    finally:
        db.close()


def test_generate_invoice_action_applies_per_call_overrides():
    db = SessionLocal()
    try:
        staff, renter, vehicle = _seed(db)
        booking = _completed_booking(db, staff, renter, vehicle)

        _, invoice = apply_booking_action(
            db,
            booking.id,
            GenerateInvoice(action="generate-invoice", invoice_prefix="RNT", payment_terms_days=30, tax_rate=Decimal("5")),
            staff.id,
            CONFIG,
        )

        assert invoice.invoice_number == f"RNT-{utc_now().year}-000001"
        due_in = ensure_utc(invoice.due_date) - ensure_utc(invoice.created_at)
        assert timedelta(days=29, hours=23) < due_in <= timedelta(days=30, minutes=1)
        assert invoice.tax_amount == Decimal("500.00")
    finally:
        db.close()


def test_generate_invoice_action_rejects_unknown_overrides():
    with pytest.raises(ValidationError):
        GenerateInvoice(action="generate-invoice", payment_terms=30)
    with pytest.raises(ValidationError):
        GenerateInvoice(action="generate-invoice", invoice_prefix="INV-2024")


def test_issue_draft_invoice():
    db = SessionLocal()
    try:
        staff, renter, vehicle = _seed(db)
        booking = _completed_booking(db, staff, renter, vehicle)
        invoice = generate_invoice_for_booking(db, booking.id, actor_id=staff.id, config=CONFIG)

        issued = issue_invoice(db, invoice.id, actor_id=staff.id)

        assert issued.status == InvoiceStatus.ISSUED
        assert issued.issued_at is not None
        with pytest.raises(PreconditionError, match="already been issued"):
            issue_invoice(db, invoice.id, actor_id=staff.id)
    finally:
        db.close()


def test_issue_partially_paid_invoice_keeps_ledger_status():
    db = SessionLocal()
    try:
        staff, renter, vehicle = _seed(db)
        booking = _completed_booking(
            db, staff, renter, vehicle, confirm={"advance_amount": Decimal("2000"), "advance_paid": True}
        )
        invoice = generate_invoice_for_booking(db, booking.id, actor_id=staff.id, config=CONFIG)

        issued = issue_invoice(db, invoice.id, actor_id=staff.id)

        assert issued.status == InvoiceStatus.PARTIALLY_PAID
        assert issued.issued_at is not None
    finally:
        db.close()


def test_issue_missing_invoice_is_not_found():
    db = SessionLocal()
    try:
        with pytest.raises(NotFoundError):
            issue_invoice(db, 31337)
    finally:
        db.close()
