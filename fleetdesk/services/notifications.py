"""Notification templates and the post-commit notification sink.

Workflow services call ``emit_event`` only after their own transaction has
committed. Failures here are logged and never propagate: the booking state
and money are already persisted by then.
"""

import logging
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fleetdesk.models.notification import Notification

logger = logging.getLogger(__name__)


def _format_amount(amount: Decimal, currency_symbol: str) -> str:
    return f"{currency_symbol}{Decimal(amount):,.2f}"


def booking_created(booking_id: int, vehicle_name: str) -> dict:
    return {
        "event": "booking_created",
        "title": "Booking Created",
        "message": f"Your booking for {vehicle_name} has been created and is pending confirmation.",
        "data": {"booking_id": booking_id},
    }


def booking_confirmed(booking_id: int, vehicle_name: str, start_date: str) -> dict:
    return {
        "event": "booking_confirmed",
        "title": "Booking Confirmed",
        "message": f"Your booking for {vehicle_name} has been confirmed! Pickup date: {start_date}",
        "data": {"booking_id": booking_id},
    }


def booking_cancelled(booking_id: int, vehicle_name: str) -> dict:
    return {
        "event": "booking_cancelled",
        "title": "Booking Cancelled",
        "message": f"Your booking for {vehicle_name} has been cancelled.",
        "data": {"booking_id": booking_id},
    }


def rental_completed(booking_id: int, vehicle_name: str) -> dict:
    return {
        "event": "rental_completed",
        "title": "Rental Completed",
        "message": f"Your rental of {vehicle_name} has been completed. Thank you for choosing us!",
        "data": {"booking_id": booking_id},
    }


def invoice_generated(invoice_id: int, invoice_number: str, total_amount: Decimal, currency_symbol: str = "Rs.") -> dict:
    total = _format_amount(total_amount, currency_symbol)
    return {
        "event": "invoice_generated",
        "title": "Invoice Generated",
        "message": f"Invoice {invoice_number} for {total} has been generated for your rental.",
        "data": {"invoice_id": invoice_id, "invoice_number": invoice_number},
    }


def payment_received(
    invoice_id: int,
    invoice_number: str,
    amount: Decimal,
    balance_due: Decimal,
    currency_symbol: str = "Rs.",
) -> dict:
    paid = _format_amount(amount, currency_symbol)
    if balance_due <= 0:
        message = f"Payment of {paid} received. Invoice {invoice_number} is now fully paid. Thank you!"
    else:
        remaining = _format_amount(balance_due, currency_symbol)
        message = f"Payment of {paid} received for invoice {invoice_number}. Remaining balance: {remaining}"
    return {
        "event": "payment_received",
        "title": "Payment Received",
        "message": message,
        "data": {"invoice_id": invoice_id, "invoice_number": invoice_number},
    }


def emit_event(db: Session, user_id: int, template: dict) -> Notification | None:
    """Persist an in-app notification in its own commit; return None on failure."""
    try:
        notification = Notification(
            user_id=user_id,
            event=template["event"],
            title=template["title"],
            message=template["message"],
            data=template.get("data"),
        )
        db.add(notification)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to deliver %s notification to user %s", template.get("event"), user_id)
        return None
    logger.info("Notification %s queued for user %s", template["event"], user_id)
    return notification
