import uuid
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, field_validator

from .reports import ReportSummary


class UnitBase(BaseModel):
    customer_id: Optional[uuid.UUID] = None
    partner_id: Optional[uuid.UUID] = None

    @field_validator('customer_id', 'partner_id', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class UnitCreate(UnitBase):
    unit_name: str


class UnitUpdate(UnitBase):
    unit_name: Optional[str] = None


class UnitResponse(BaseModel):
    id: uuid.UUID
    unit_name: str
    customer_id: Optional[uuid.UUID] = None
    partner_id: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UnitDetailResponse(UnitResponse):
    reports: List[ReportSummary] = []
