from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from datetime import datetime
from enum import Enum


class ContactType(str, Enum):
    BROKER = "broker"
    SHIPPER = "shipper"
    DISPATCHER = "dispatcher"
    OTHER = "other"


class EmailContact(BaseModel):
    """Saved invoice recipient"""
    id: str
    user_id: str
    email: str
    name: Optional[str] = None
    company: Optional[str] = None
    contact_type: Optional[ContactType] = None
    use_count: int = 0
    last_used_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EmailContactUpsert(BaseModel):
    email: EmailStr
    name: Optional[str] = Field(None, max_length=200)
    company: Optional[str] = Field(None, max_length=200)
    contact_type: Optional[ContactType] = None
