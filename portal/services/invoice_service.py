"""
Invoice Service

Tracks invoices billed to clients and notifies the client's webhook
subscriptions as an invoice moves through its lifecycle.
"""

import logging
import secrets
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from portal.config import Settings, get_settings
from portal.error_handlers import NotFoundError, ValidationError
from portal.models import User, Invoice, InvoiceStatus
from portal.services.webhook_service import WebhookService, WebhookEvent

logger = logging.getLogger(__name__)


def invoice_payload(invoice: Invoice) -> dict:
    """Event data sent to subscribers for invoice events"""
    return {
        "id": str(invoice.id),
        "number": invoice.number,
        "client_id": str(invoice.client_id),
        "amount": str(invoice.amount),
        "currency": invoice.currency,
        "status": invoice.status,
        "due_date": invoice.due_date.isoformat() if invoice.due_date else None,
        "sent_at": invoice.sent_at.isoformat() if invoice.sent_at else None,
        "paid_at": invoice.paid_at.isoformat() if invoice.paid_at else None,
    }


class InvoiceService:
    """Service for invoices"""

    def __init__(
        self,
        db: Session,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.webhooks = WebhookService(db, client=client, settings=self.settings)

    def _generate_number(self) -> str:
        return f"INV-{datetime.utcnow():%Y%m}-{secrets.token_hex(3).upper()}"

    def get_invoice(self, invoice_id: UUID) -> Invoice:
        invoice = self.db.query(Invoice).filter(Invoice.id == invoice_id).first()
        if not invoice:
            raise NotFoundError("Invoice not found", resource_type="invoice")
        return invoice

    def list_for_client(self, client_id: UUID) -> List[Invoice]:
        return self.db.query(Invoice).filter(
            Invoice.client_id == client_id
        ).order_by(Invoice.created_at.desc()).all()

    async def create_invoice(
        self,
        client_id: UUID,
        amount: Decimal,
        currency: str = "USD",
        due_date: Optional[datetime] = None,
    ) -> Invoice:
        """Create a draft invoice and emit invoice.created"""
        if amount is None or Decimal(amount) <= 0:
            raise ValidationError("Invoice amount must be positive")
        if not self.db.query(User).filter(User.id == client_id).first():
            raise NotFoundError("Client not found", resource_type="user")

        invoice = Invoice(
            client_id=client_id,
            number=self._generate_number(),
            amount=Decimal(amount),
            currency=currency.upper(),
            status=InvoiceStatus.DRAFT.value,
            due_date=due_date,
        )
        self.db.add(invoice)
        self.db.commit()
        self.db.refresh(invoice)

        logger.info(f"Invoice {invoice.number} created for client {client_id}")
        await self.webhooks.trigger_webhooks(client_id, WebhookEvent.INVOICE_CREATED, invoice_payload(invoice))
        return invoice

    async def send_invoice(self, invoice_id: UUID) -> Invoice:
        """Mark a draft invoice sent and emit invoice.sent"""
        invoice = self.get_invoice(invoice_id)
        if invoice.status not in (InvoiceStatus.DRAFT.value, InvoiceStatus.SENT.value):
            raise ValidationError(f"Cannot send an invoice that is {invoice.status}")

        invoice.status = InvoiceStatus.SENT.value
        invoice.sent_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(invoice)

        await self.webhooks.trigger_webhooks(invoice.client_id, WebhookEvent.INVOICE_SENT, invoice_payload(invoice))
        return invoice

    async def mark_paid(self, invoice_id: UUID) -> Invoice:
        """Record payment and emit invoice.paid"""
        invoice = self.get_invoice(invoice_id)
        if invoice.status == InvoiceStatus.PAID.value:
            raise ValidationError("Invoice is already paid")
        if invoice.status == InvoiceStatus.CANCELLED.value:
            raise ValidationError("Cannot mark a cancelled invoice as paid")

        invoice.status = InvoiceStatus.PAID.value
        invoice.paid_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(invoice)

        logger.info(f"Invoice {invoice.number} marked paid")
        await self.webhooks.trigger_webhooks(invoice.client_id, WebhookEvent.INVOICE_PAID, invoice_payload(invoice))
        return invoice
