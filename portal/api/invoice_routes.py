"""
Invoice API routes.

State changes notify the client's webhook subscriptions
(invoice.created, invoice.sent, invoice.paid).

Endpoints:
- POST /admin/invoices - Create invoice (admin)
- POST /admin/invoices/{id}/send - Mark invoice sent (admin)
- POST /admin/invoices/{id}/mark-paid - Record payment (admin)
- GET /portal/invoices - List the caller's invoices
"""

import logging
from datetime import datetime
from decimal import Decimal
from uuid import UUID
from typing import List, Optional

import httpx
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from portal.database import get_db
from portal.models import User, UserRole
from portal.dependencies.auth import get_current_user, require_role
from portal.dependencies.webhooks import get_webhook_client
from portal.services.invoice_service import InvoiceService

logger = logging.getLogger(__name__)

admin_router = APIRouter(prefix="/admin/invoices", tags=["Invoices"])
router = APIRouter(prefix="/portal/invoices", tags=["Invoices"])


class InvoiceCreate(BaseModel):
    client_id: UUID
    amount: Decimal = Field(..., gt=0)
    currency: str = Field("USD", min_length=3, max_length=3)
    due_date: Optional[datetime] = None


class InvoiceResponse(BaseModel):
    id: UUID
    client_id: UUID
    number: str
    amount: str
    currency: str
    status: str
    due_date: Optional[str] = None
    sent_at: Optional[str] = None
    paid_at: Optional[str] = None
    created_at: str


def _invoice_response(invoice) -> InvoiceResponse:
    return InvoiceResponse(
        id=invoice.id,
        client_id=invoice.client_id,
        number=invoice.number,
        amount=str(invoice.amount),
        currency=invoice.currency,
        status=invoice.status,
        due_date=invoice.due_date.isoformat() if invoice.due_date else None,
        sent_at=invoice.sent_at.isoformat() if invoice.sent_at else None,
        paid_at=invoice.paid_at.isoformat() if invoice.paid_at else None,
        created_at=invoice.created_at.isoformat(),
    )


@admin_router.post(
    "",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create invoice"
)
async def create_invoice(
    invoice_data: InvoiceCreate,
    db: Session = Depends(get_db),
    webhook_client: Optional[httpx.AsyncClient] = Depends(get_webhook_client),
    current_user: User = Depends(require_role(UserRole.ADMIN)),
):
    """Create a draft invoice for a client. Admin only."""
    invoice = await InvoiceService(db, client=webhook_client).create_invoice(
        client_id=invoice_data.client_id,
        amount=invoice_data.amount,
        currency=invoice_data.currency,
        due_date=invoice_data.due_date.replace(tzinfo=None) if invoice_data.due_date else None,
    )
    return _invoice_response(invoice)


@admin_router.post(
    "/{invoice_id}/send",
    response_model=InvoiceResponse,
    status_code=status.HTTP_200_OK,
    summary="Send invoice"
)
async def send_invoice(
    invoice_id: UUID,
    db: Session = Depends(get_db),
    webhook_client: Optional[httpx.AsyncClient] = Depends(get_webhook_client),
    current_user: User = Depends(require_role(UserRole.ADMIN)),
):
    invoice = await InvoiceService(db, client=webhook_client).send_invoice(invoice_id)
    return _invoice_response(invoice)


@admin_router.post(
    "/{invoice_id}/mark-paid",
    response_model=InvoiceResponse,
    status_code=status.HTTP_200_OK,
    summary="Mark invoice paid"
)
async def mark_invoice_paid(
    invoice_id: UUID,
    db: Session = Depends(get_db),
    webhook_client: Optional[httpx.AsyncClient] = Depends(get_webhook_client),
    current_user: User = Depends(require_role(UserRole.ADMIN)),
):
    invoice = await InvoiceService(db, client=webhook_client).mark_paid(invoice_id)
    return _invoice_response(invoice)


@router.get(
    "",
    response_model=List[InvoiceResponse],
    status_code=status.HTTP_200_OK,
    summary="List my invoices"
)
async def list_invoices(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return [_invoice_response(i) for i in InvoiceService(db).list_for_client(current_user.id)]
