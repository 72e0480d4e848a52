"""Vehicle availability coordination.

Only booking transitions flip ``Vehicle.available``. Nothing here commits;
the calling transition owns the transaction so the flag changes together
with the booking row or not at all.
"""

from datetime import datetime

from sqlalchemy.orm import Session

from fleetdesk.core.errors import ConflictError, NotFoundError
from fleetdesk.core.time import ensure_utc
from fleetdesk.models.booking import ACTIVE_STATUSES, Booking
from fleetdesk.models.vehicle import Vehicle


def lock_vehicle(db: Session, vehicle_id: int) -> Vehicle:
    """Load the vehicle row under a write lock (no-op lock on SQLite)."""
    vehicle = db.query(Vehicle).filter(Vehicle.id == vehicle_id).with_for_update().first()
    if vehicle is None:
        raise NotFoundError("Vehicle not found")
    return vehicle


def set_vehicle_available(db: Session, vehicle_id: int, available: bool) -> Vehicle:
    vehicle = lock_vehicle(db, vehicle_id)
    if vehicle.available != available:
        vehicle.available = available
        db.flush()
    return vehicle


def find_overlapping_booking(
    db: Session,
    vehicle_id: int,
    start: datetime,
    end: datetime,
    exclude_booking_id: int | None = None,
) -> Booking | None:
    query = db.query(Booking).filter(
        Booking.vehicle_id == vehicle_id,
        Booking.status.in_([str(s) for s in ACTIVE_STATUSES]),
        Booking.start_date < ensure_utc(end),
        Booking.end_date > ensure_utc(start),
    )
    if exclude_booking_id is not None:
        query = query.filter(Booking.id != exclude_booking_id)
    return query.order_by(Booking.start_date.asc()).first()


def ensure_vehicle_free(
    db: Session,
    vehicle_id: int,
    start: datetime,
    end: datetime,
    exclude_booking_id: int | None = None,
) -> Vehicle:
    """Lock the vehicle, then reject the period if another active booking overlaps it."""
    vehicle = lock_vehicle(db, vehicle_id)
    clash = find_overlapping_booking(db, vehicle_id, start, end, exclude_booking_id=exclude_booking_id)
    if clash is not None:
        raise ConflictError(f"Vehicle is already booked for these dates (booking {clash.id})")
    return vehicle
