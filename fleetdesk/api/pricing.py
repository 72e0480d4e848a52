"""Rental price preview."""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from fleetdesk.core.security import get_current_user
from fleetdesk.db.session import get_db
from fleetdesk.dependencies.config import get_rental_config
from fleetdesk.models.package import Package
from fleetdesk.models.user import User
from fleetdesk.models.vehicle import Vehicle
from fleetdesk.schemas.pricing import QuoteRequest
from fleetdesk.services.pricing import RentalConfig, RentalQuote, ZERO, custom_costs_total, quote_rental

router = APIRouter(prefix="/pricing", tags=["pricing"])


@router.post("/quote", response_model=RentalQuote)
async def quote(
    payload: QuoteRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    config: RentalConfig = Depends(get_rental_config),
):
    vehicle = db.query(Vehicle).filter(Vehicle.id == payload.vehicle_id).first()
    if not vehicle:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Vehicle not found")

    packages = []
    if payload.package_ids:
        packages = (
            db.query(Package)
            .filter(Package.id.in_(payload.package_ids), Package.is_active.is_(True))
            .all()
        )
        if len(packages) != len(set(payload.package_ids)):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Package not found or inactive")

    extras = sum((custom_costs_total(p, payload.selected_custom_cost_ids) for p in packages), ZERO)
    return quote_rental(vehicle.price_per_day, payload.start_date, payload.end_date, packages, config, extra_costs=extras)
