"""Booking creation, lookup and workflow transitions."""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from fleetdesk.core.errors import WorkflowError
from fleetdesk.core.security import get_current_staff, get_current_user
from fleetdesk.db.session import get_db
from fleetdesk.dependencies.config import get_rental_config
from fleetdesk.models.user import STAFF_ROLES, User
from fleetdesk.schemas.booking import BookingAction, BookingCreate, BookingRead, WorkflowResult
from fleetdesk.services.bookings import apply_booking_action, create_booking, get_booking
from fleetdesk.services.pricing import RentalConfig

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("/", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
async def create_booking_endpoint(
    payload: BookingCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    config: RentalConfig = Depends(get_rental_config),
):
    renter_id = current_user.id
    if payload.renter_id is not None and payload.renter_id != current_user.id:
        if current_user.role not in STAFF_ROLES:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot book for another user")
        renter_id = payload.renter_id
    try:
        return create_booking(db, payload, renter_id=renter_id, config=config)
    except WorkflowError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc


@router.get("/{booking_id}", response_model=BookingRead)
async def read_booking(
    booking_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        booking = get_booking(db, booking_id)
    except WorkflowError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    if booking.renter_id != current_user.id and current_user.role not in STAFF_ROLES:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    return booking


@router.post("/{booking_id}/workflow", response_model=WorkflowResult)
async def run_booking_workflow(
    booking_id: int,
    action: BookingAction,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff),
    config: RentalConfig = Depends(get_rental_config),
):
    try:
        booking, invoice = apply_booking_action(db, booking_id, action, actor_id=current_user.id, config=config)
    except WorkflowError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    return {"booking": booking, "invoice": invoice}
