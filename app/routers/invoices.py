from fastapi import APIRouter, Depends, Query
from typing import List, Optional
from app.core.dependencies import (
    get_authenticated_user, AuthenticatedUser,
    get_invoices_service, get_invoice_lifecycle_service
)
from app.models.invoice import (
    Invoice, InvoiceCreate, InvoiceDocument, InvoiceEmail, InvoiceEmailRequest,
    InvoiceStatus, RecipientInfo, AgingSummary
)
from app.services.invoices_service import InvoicesService
from app.services.invoice_lifecycle_service import InvoiceLifecycleService

router = APIRouter()


@router.post("", response_model=Invoice, status_code=201)
async def create_invoice(
    data: InvoiceCreate,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    invoices: InvoicesService = Depends(get_invoices_service)
):
    """
    Aggregate completed detention events into a draft invoice.

    All selected events must belong to the caller and be completed. They
    move to invoiced together with the invoice creation, or not at all.
    """
    return await invoices.create_invoice(user.user_id, data)


@router.get("", response_model=List[Invoice])
async def list_invoices(
    status: Optional[InvoiceStatus] = None,
    limit: Optional[int] = Query(None, ge=1, le=500),
    user: AuthenticatedUser = Depends(get_authenticated_user),
    invoices: InvoicesService = Depends(get_invoices_service)
):
    return await invoices.list_invoices(user.user_id, status=status, limit=limit)


@router.get("/aging", response_model=AgingSummary)
async def get_aging_summary(
    user: AuthenticatedUser = Depends(get_authenticated_user),
    invoices: InvoicesService = Depends(get_invoices_service)
):
    """Outstanding sent invoices bucketed by days since sending"""
    return await invoices.aging_summary(user.user_id)


@router.get("/number/{invoice_number}", response_model=Invoice)
async def get_invoice_by_number(
    invoice_number: str,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    invoices: InvoicesService = Depends(get_invoices_service)
):
    return await invoices.get_invoice_by_number(user.user_id, invoice_number)


@router.get("/{invoice_id}", response_model=Invoice)
async def get_invoice(
    invoice_id: str,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    invoices: InvoicesService = Depends(get_invoices_service)
):
    return await invoices.get_invoice(user.user_id, invoice_id)


@router.get("/{invoice_id}/emails", response_model=List[InvoiceEmail])
async def list_invoice_emails(
    invoice_id: str,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    invoices: InvoicesService = Depends(get_invoices_service)
):
    return await invoices.list_invoice_emails(user.user_id, invoice_id)


@router.post("/{invoice_id}/send", response_model=Invoice)
async def send_invoice(
    invoice_id: str,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    lifecycle: InvoiceLifecycleService = Depends(get_invoice_lifecycle_service)
):
    """Mark a draft invoice as sent (delivered outside the app)"""
    return await lifecycle.send(user.user_id, invoice_id)


@router.post("/{invoice_id}/mark-paid", response_model=Invoice)
async def mark_invoice_paid(
    invoice_id: str,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    lifecycle: InvoiceLifecycleService = Depends(get_invoice_lifecycle_service)
):
    """
    Record payment. Every referenced event becomes paid.
    Safe to retry: an already paid invoice is returned unchanged.
    """
    return await lifecycle.mark_paid(user.user_id, invoice_id)


@router.delete("/{invoice_id}")
async def delete_invoice(
    invoice_id: str,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    lifecycle: InvoiceLifecycleService = Depends(get_invoice_lifecycle_service)
):
    """Delete a draft invoice; its events return to completed"""
    await lifecycle.delete(user.user_id, invoice_id)
    return {
        "success": True,
        "message": "Invoice deleted"
    }


@router.patch("/{invoice_id}/recipient", response_model=Invoice)
async def update_recipient(
    invoice_id: str,
    data: RecipientInfo,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    lifecycle: InvoiceLifecycleService = Depends(get_invoice_lifecycle_service)
):
    return await lifecycle.update_recipient(user.user_id, invoice_id, data)


@router.put("/{invoice_id}/document", response_model=Invoice)
async def set_document(
    invoice_id: str,
    data: InvoiceDocument,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    lifecycle: InvoiceLifecycleService = Depends(get_invoice_lifecycle_service)
):
    """Attach the rendered PDF location"""
    return await lifecycle.set_document_url(user.user_id, invoice_id, data.pdf_url)


@router.post("/{invoice_id}/email", response_model=InvoiceEmail)
async def email_invoice(
    invoice_id: str,
    data: InvoiceEmailRequest,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    lifecycle: InvoiceLifecycleService = Depends(get_invoice_lifecycle_service)
):
    """
    Email the invoice. A draft becomes sent when delivery succeeds; a sent
    invoice gets a reminder. The returned log entry reports the outcome.
    """
    return await lifecycle.email_invoice(user.user_id, invoice_id, data)
