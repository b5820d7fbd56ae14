"""
Invoices billed by a fleet. Per-invoice actions live under /invoices/{id}
and check fleet admin access there.
"""
from fastapi import APIRouter, Depends, Query
from typing import List, Optional
from app.core.dependencies import get_authenticated_user, AuthenticatedUser, get_invoices_service
from app.models.invoice import Invoice, InvoiceCreate, InvoiceStatus, AgingSummary
from app.services.invoices_service import InvoicesService

router = APIRouter()


@router.post("/{fleet_id}/invoices", response_model=Invoice, status_code=201)
async def create_fleet_invoice(
    fleet_id: str,
    data: InvoiceCreate,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    invoices: InvoicesService = Depends(get_invoices_service)
):
    """Aggregate completed events of the fleet's drivers. Fleet admins only."""
    return await invoices.create_invoice(user.user_id, data, fleet_id=fleet_id)


@router.get("/{fleet_id}/invoices", response_model=List[Invoice])
async def list_fleet_invoices(
    fleet_id: str,
    status: Optional[InvoiceStatus] = None,
    limit: Optional[int] = Query(None, ge=1, le=500),
    user: AuthenticatedUser = Depends(get_authenticated_user),
    invoices: InvoicesService = Depends(get_invoices_service)
):
    return await invoices.list_invoices(user.user_id, fleet_id=fleet_id, status=status, limit=limit)


@router.get("/{fleet_id}/invoices/aging", response_model=AgingSummary)
async def get_fleet_aging_summary(
    fleet_id: str,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    invoices: InvoicesService = Depends(get_invoices_service)
):
    return await invoices.aging_summary(user.user_id, fleet_id=fleet_id)
