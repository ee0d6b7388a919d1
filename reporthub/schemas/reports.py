import uuid
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel


class ReportFileResponse(BaseModel):
    id: uuid.UUID
    original_name: str
    mime_type: Optional[str] = None
    size: Optional[int] = None
    uploaded_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ReportSummary(BaseModel):
    id: uuid.UUID
    report_number: str
    vn_number: str
    status: str
    is_new: bool

    class Config:
        from_attributes = True


class ReportResponse(ReportSummary):
    admin_note: Optional[str] = None
    partner_note: Optional[str] = None
    partner_id: uuid.UUID
    customer_id: Optional[uuid.UUID] = None
    unit_id: Optional[uuid.UUID] = None
    files: List[ReportFileResponse] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ReportCreateResponse(BaseModel):
    message: str
    notification: str
    report: ReportResponse


class ReportUpdate(BaseModel):
    # "" for customer_id/unit_id clears the association
    report_number: Optional[str] = None
    vn_number: Optional[str] = None
    status: Optional[str] = None
    admin_note: Optional[str] = None
    partner_note: Optional[str] = None
    partner_id: Optional[str] = None
    customer_id: Optional[str] = None
    unit_id: Optional[str] = None


class PartnerNoteUpdate(BaseModel):
    partner_note: Optional[str] = None
