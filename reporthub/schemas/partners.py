import uuid
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, EmailStr, Field, field_validator


class PartnerBase(BaseModel):
    name: str
    email: EmailStr
    person_name: Optional[str] = None
    person_contact: Optional[str] = None

    @field_validator('person_name', 'person_contact', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class PartnerCreate(PartnerBase):
    password: str = Field(min_length=6)


class PartnerUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    person_name: Optional[str] = None
    person_contact: Optional[str] = None


class PartnerPasswordUpdate(BaseModel):
    password: str = Field(min_length=6)


class PartnerResponse(BaseModel):
    id: uuid.UUID
    name: str
    email: str
    person_name: Optional[str] = None
    person_contact: Optional[str] = None
    admin_id: uuid.UUID
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
