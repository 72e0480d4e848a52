"""Invoice routes for staff and renters."""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from fleetdesk.core.errors import WorkflowError
from fleetdesk.core.security import get_current_staff, get_current_user
from fleetdesk.db.session import get_db
from fleetdesk.dependencies.config import get_rental_config
from fleetdesk.models.user import STAFF_ROLES, User
from fleetdesk.schemas.invoice import InvoiceRead
from fleetdesk.schemas.payment import PaymentCreate
from fleetdesk.services.invoicing import get_invoice, issue_invoice
from fleetdesk.services.ledger import record_payment
from fleetdesk.services.pricing import RentalConfig

router = APIRouter(prefix="/invoices", tags=["invoices"])


@router.get("/{invoice_id}", response_model=InvoiceRead)
async def read_invoice(invoice_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    try:
        invoice = get_invoice(db, invoice_id)
    except WorkflowError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    if invoice.booking.renter_id != current_user.id and current_user.role not in STAFF_ROLES:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    return invoice


@router.post("/{invoice_id}/payments", response_model=InvoiceRead, status_code=status.HTTP_201_CREATED)
async def create_payment_for_invoice(
    invoice_id: int,
    payload: PaymentCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff),
    config: RentalConfig = Depends(get_rental_config),
):
    try:
        return record_payment(
            db,
            invoice_id,
            payload.amount,
            payload.method,
            reference=payload.reference,
            notes=payload.notes,
            actor_id=current_user.id,
            config=config,
        )
    except WorkflowError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc


@router.post("/{invoice_id}/issue", response_model=InvoiceRead)
async def issue_invoice_endpoint(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_staff),
):
    try:
        return issue_invoice(db, invoice_id, actor_id=current_user.id)
    except WorkflowError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
