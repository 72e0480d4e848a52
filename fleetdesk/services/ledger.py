"""Payment ledger: append payments and keep invoice balances consistent."""

import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from fleetdesk.core.errors import PreconditionError
from fleetdesk.core.time import utc_now
from fleetdesk.db.session import atomic
from fleetdesk.models.booking import BookingStatus
from fleetdesk.models.invoice import Invoice, InvoiceStatus
from fleetdesk.models.payment import Payment, PaymentMethod
from fleetdesk.services import notifications
from fleetdesk.services.invoicing import get_invoice
from fleetdesk.services.pricing import RentalConfig, to_decimal

logger = logging.getLogger(__name__)


def recalculate_invoice_totals(invoice: Invoice) -> None:
    paid = sum((to_decimal(p.amount) for p in invoice.payments if p.amount is not None), Decimal("0.00"))
    total = to_decimal(invoice.total_amount)
    invoice.amount_paid = paid
    balance = total - paid
    if balance < Decimal("0.00"):
        balance = Decimal("0.00")
    invoice.balance_due = balance


def determine_invoice_status(invoice: Invoice) -> str:
    if to_decimal(invoice.balance_due) <= 0:
        return InvoiceStatus.PAID
    if to_decimal(invoice.amount_paid) > 0:
        return InvoiceStatus.PARTIALLY_PAID
    return invoice.status


def _parse_method(method) -> PaymentMethod:
    try:
        return PaymentMethod(method)
    except ValueError:
        raise PreconditionError(f"Unsupported payment method: {method}") from None


def record_payment(
    db: Session,
    invoice_id: int,
    amount,
    method,
    reference: str | None = None,
    notes: str | None = None,
    actor_id: int | None = None,
    config: RentalConfig | None = None,
) -> Invoice:
    """Append a payment to the invoice and settle the booking when fully paid."""
    payment_amount = to_decimal(amount)
    if payment_amount <= 0:
        raise PreconditionError("Payment amount must be greater than zero")
    payment_method = _parse_method(method)

    with atomic(db):
        invoice = get_invoice(db, invoice_id, for_update=True)
        if invoice.status == InvoiceStatus.PAID:
            raise PreconditionError("Invoice is already PAID")

        invoice.payments.append(
            Payment(
                amount=payment_amount,
                method=payment_method,
                reference=reference,
                notes=notes,
                received_by=actor_id,
                paid_at=utc_now(),
            )
        )
        recalculate_invoice_totals(invoice)
        invoice.status = determine_invoice_status(invoice)
        if invoice.status == InvoiceStatus.PAID:
            invoice.paid_at = utc_now()
            invoice.booking.status = BookingStatus.PAID

    logger.info("Payment of %s recorded on invoice %s, balance %s", payment_amount, invoice.invoice_number, invoice.balance_due)
    currency_symbol = config.currency_symbol if config is not None else "Rs."
    notifications.emit_event(
        db,
        invoice.booking.renter_id,
        notifications.payment_received(
            invoice.id, invoice.invoice_number, payment_amount, to_decimal(invoice.balance_due), currency_symbol
        ),
    )
    return invoice
