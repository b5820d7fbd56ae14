from fastapi import APIRouter, Depends, Query
from typing import List, Optional
from app.core.dependencies import get_authenticated_user, AuthenticatedUser, get_contacts_service
from app.models.email_contact import EmailContact, EmailContactUpsert
from app.services.contacts_service import ContactsService

router = APIRouter()


@router.get("", response_model=List[EmailContact])
async def list_contacts(
    q: Optional[str] = Query(None, max_length=200),
    limit: Optional[int] = Query(None, ge=1, le=100),
    user: AuthenticatedUser = Depends(get_authenticated_user),
    contacts: ContactsService = Depends(get_contacts_service)
):
    """Saved recipients, most used first, optionally filtered by email/name/company"""
    return await contacts.list_contacts(user.user_id, query=q, limit=limit)


@router.post("", response_model=EmailContact)
async def upsert_contact(
    data: EmailContactUpsert,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    contacts: ContactsService = Depends(get_contacts_service)
):
    return await contacts.upsert_contact(user.user_id, data)
