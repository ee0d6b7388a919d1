import os
import uuid
from typing import List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile, status
from sqlalchemy.orm import Session
from slugify import slugify

from ..auth.security import Principal, require_admin, require_any, require_partner
from ..db import get_db
from ..errors import ValidationError
from ..schemas.auth import MessageResponse
from ..schemas.reports import PartnerNoteUpdate, ReportCreateResponse, ReportResponse, ReportUpdate
from ..services import lifecycle, reports
from ..services.delivery import Mailer, get_mailer
from ..storage.factory import get_storage
from ..storage.provider import StorageProvider


router = APIRouter(prefix="/api/reports", tags=["reports"])


def content_disposition(filename: str) -> str:
    """Attachment header with an ASCII fallback and the RFC 5987 UTF-8 name."""
    stem, ext = os.path.splitext(filename or "")
    ext = slugify(ext)
    fallback = (slugify(stem) or "file") + (f".{ext}" if ext else "")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename or fallback, safe='')}"


def _form_uuid(value: Optional[str], field: str) -> Optional[uuid.UUID]:
    value = (value or "").strip()
    if not value:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        raise ValidationError(f"Invalid {field}")


async def _read_uploads(files: Optional[List[UploadFile]]) -> List[lifecycle.IncomingFile]:
    out: List[lifecycle.IncomingFile] = []
    for f in files or []:
        content = await f.read()
        out.append(lifecycle.IncomingFile(filename=f.filename or "report.pdf", content=content, content_type=f.content_type))
    return out


@router.get("", response_model=List[ReportResponse])
def list_reports(db: Session = Depends(get_db), admin: Principal = Depends(require_admin)):
    return reports.list_reports_for_admin(db, admin)


@router.post("", response_model=ReportCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_report(
    report_number: str = Form(...),
    vn_number: str = Form(...),
    partner_id: str = Form(...),
    customer_id: Optional[str] = Form(None),
    unit_id: Optional[str] = Form(None),
    admin_note: Optional[str] = Form(None),
    status_value: Optional[str] = Form(None, alias="status"),
    send_email: bool = Form(False),
    files: Optional[List[UploadFile]] = File(None),
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    mailer: Mailer = Depends(get_mailer),
    admin: Principal = Depends(require_admin),
):
    incoming = await _read_uploads(files)
    partner_uuid = _form_uuid(partner_id, "partner_id")
    if partner_uuid is None:
        raise ValidationError("Partner is required")
    result = reports.create_report(
        db,
        storage,
        mailer,
        admin,
        report_number=report_number,
        vn_number=vn_number,
        partner_id=partner_uuid,
        customer_id=_form_uuid(customer_id, "customer_id"),
        unit_id=_form_uuid(unit_id, "unit_id"),
        admin_note=admin_note,
        status=status_value,
        files=incoming,
        send_email=send_email,
    )
    return ReportCreateResponse(
        message=result.message,
        notification=result.notification,
        report=ReportResponse.model_validate(result.report),
    )


@router.get("/partner", response_model=List[ReportResponse])
def partner_reports(db: Session = Depends(get_db), partner: Principal = Depends(require_partner)):
    return reports.list_reports_for_partner(db, partner)


@router.put("/{report_id}/partner-note", response_model=ReportResponse)
def update_partner_note(
    report_id: uuid.UUID,
    body: PartnerNoteUpdate,
    db: Session = Depends(get_db),
    partner: Principal = Depends(require_partner),
):
    return reports.update_partner_note(db, partner, report_id, body.partner_note)


@router.post("/{report_id}/send", response_model=MessageResponse)
def send_to_customer(
    report_id: uuid.UUID,
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    mailer: Mailer = Depends(get_mailer),
    partner: Principal = Depends(require_partner),
):
    lifecycle.send_to_customer(db, storage, mailer, partner, report_id)
    return MessageResponse(message="Report sent to customer successfully")


@router.post("/{report_id}/mark-read", response_model=ReportResponse)
def mark_read(report_id: uuid.UUID, db: Session = Depends(get_db), partner: Principal = Depends(require_partner)):
    return lifecycle.mark_read(db, partner, report_id)


@router.get("/{report_id}", response_model=ReportResponse)
def get_report(report_id: uuid.UUID, db: Session = Depends(get_db), principal: Principal = Depends(require_any)):
    return reports.get_report(db, principal, report_id)


@router.get("/{report_id}/download/{file_id}")
def download_file(
    report_id: uuid.UUID,
    file_id: uuid.UUID,
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    principal: Principal = Depends(require_any),
):
    record, data = reports.download_file(db, storage, principal, report_id, file_id)
    return Response(
        content=data,
        media_type=record.mime_type or "application/octet-stream",
        headers={"Content-Disposition": content_disposition(record.original_name)},
    )


@router.post("/{report_id}/files", response_model=ReportResponse)
async def attach_files(
    report_id: uuid.UUID,
    files: List[UploadFile] = File(...),
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    admin: Principal = Depends(require_admin),
):
    incoming = await _read_uploads(files)
    return lifecycle.attach_files(db, storage, admin, report_id, incoming)


@router.delete("/{report_id}/files/{file_id}", response_model=ReportResponse)
def detach_file(
    report_id: uuid.UUID,
    file_id: uuid.UUID,
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    admin: Principal = Depends(require_admin),
):
    return lifecycle.detach_file(db, storage, admin, report_id, file_id)


@router.post("/{report_id}/send-to-partner", response_model=MessageResponse)
def send_to_partner(
    report_id: uuid.UUID,
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    mailer: Mailer = Depends(get_mailer),
    admin: Principal = Depends(require_admin),
):
    lifecycle.send_to_partner(db, storage, mailer, admin, report_id)
    return MessageResponse(message="Report sent to partner successfully")


@router.put("/{report_id}", response_model=ReportResponse)
def update_report(
    report_id: uuid.UUID,
    body: ReportUpdate,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    return reports.update_report(db, admin, report_id, body.model_dump(exclude_unset=True))


@router.delete("/{report_id}", response_model=MessageResponse)
def delete_report(
    report_id: uuid.UUID,
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    admin: Principal = Depends(require_admin),
):
    reports.delete_report(db, storage, admin, report_id)
    return MessageResponse(message="Report deleted successfully")
