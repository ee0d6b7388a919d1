import uuid
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, EmailStr


class CustomerCreate(BaseModel):
    name: str
    email: EmailStr
    partner_id: uuid.UUID


class CustomerUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None


class CustomerResponse(BaseModel):
    id: uuid.UUID
    name: str
    email: str
    partner_id: uuid.UUID
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
