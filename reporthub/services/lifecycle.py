"""
Report lifecycle: status transitions, the unread flag, the attached-file set and
delivery to partners and end customers.
"""
from __future__ import annotations

import html
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

import structlog
from slugify import slugify
from sqlalchemy.orm import Session

from ..auth.security import Principal
from ..config import settings
from ..errors import AuthorizationDenied, ConflictError, NotFound, StorageError, ValidationError
from ..models.models import REPORT_STATUSES, Customer, Partner, Report, ReportFile, Unit
from ..storage.provider import StorageProvider
from .delivery import Attachment, Mailer, render_list
from .ownership import authorize_or_raise


logger = structlog.get_logger(__name__)

STATUS_ACTIVE = "Active"
STATUS_REJECTED = "Rejected"
STATUS_COMPLETED = "Completed"

ALLOWED_TRANSITIONS = {
    STATUS_ACTIVE: {STATUS_COMPLETED, STATUS_REJECTED},
    STATUS_REJECTED: set(),
    STATUS_COMPLETED: set(),
}


@dataclass
class IncomingFile:
    filename: str
    content: bytes
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)


# Report numbers and status

def normalize_report_number(value: Optional[str]) -> str:
    number = (value or "").strip()
    prefix = settings.report_number_prefix
    if not number or number == prefix:
        raise ValidationError("Report number is required")
    return number if number.startswith(prefix) else f"{prefix}{number}"


def validate_status(status: str) -> str:
    if status not in REPORT_STATUSES:
        raise ValidationError(f"Invalid status '{status}'; expected one of {', '.join(REPORT_STATUSES)}")
    return status


def apply_status(report: Report, new_status: str) -> None:
    """Set ``report.status``. Free overwrite unless ENFORCE_STATUS_TRANSITIONS is on."""
    new_status = validate_status(new_status)
    current = report.status or STATUS_ACTIVE
    if new_status == current:
        return
    if settings.enforce_status_transitions and new_status not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ConflictError(f"Cannot change report status from {current} to {new_status}")
    logger.info("report_status_changed", report_id=str(report.id), old=current, new=new_status)
    report.status = new_status


def mark_read(db: Session, principal: Principal, report_id: uuid.UUID) -> Report:
    report = _load_report(db, report_id)
    authorize_or_raise(db, principal, report)
    if report.is_new:
        report.is_new = False
        db.commit()
        db.refresh(report)
        logger.info("report_marked_read", report_id=str(report.id))
    return report


# Files

def report_file_key(report_number: str, original_name: str, index: int = 0, now: Optional[datetime] = None) -> str:
    now = now or datetime.utcnow()
    stem, ext = os.path.splitext(original_name or "")
    safe_name = slugify(stem) or "file"
    number = slugify(report_number or settings.report_number_prefix)
    stamp = int(now.replace(tzinfo=now.tzinfo or timezone.utc).timestamp() * 1000)
    return f"reports/{now:%Y}/{number}/{stamp}-{index}-{safe_name}{ext.lower() or '.pdf'}"


def check_upload_limits(files: Sequence[IncomingFile], existing: int = 0) -> None:
    if existing + len(files) > settings.report_max_files:
        raise ValidationError(f"A report can hold at most {settings.report_max_files} files")
    for f in files:
        if f.size > settings.report_max_file_bytes:
            raise ValidationError(f"File '{f.filename}' exceeds the {settings.report_max_file_bytes} byte limit")
        if f.size == 0:
            raise ValidationError(f"File '{f.filename}' is empty")


def store_files(storage: StorageProvider, report: Report, files: Sequence[IncomingFile]) -> List[ReportFile]:
    """Write blobs and append ReportFile records to ``report`` (not committed).

    On a storage failure the blobs written so far are released before re-raising.
    """
    start = max((f.sort_index for f in report.files), default=-1) + 1
    written: List[str] = []
    records: List[ReportFile] = []
    try:
        for offset, f in enumerate(files):
            key = report_file_key(report.report_number, f.filename, index=start + offset)
            storage.put(f.content, key, f.content_type)
            written.append(key)
            records.append(ReportFile(
                original_name=f.filename,
                storage_path=key,
                mime_type=f.content_type or "application/octet-stream",
                size=f.size,
                uploaded_at=datetime.utcnow(),
                sort_index=start + offset,
            ))
    except StorageError:
        release_blobs(storage, written)
        raise
    report.files.extend(records)
    return records


def release_blobs(storage: StorageProvider, paths: Iterable[str]) -> int:
    """Best-effort blob cleanup; failures are logged and swallowed."""
    released = 0
    for path in paths:
        try:
            if storage.delete(path):
                released += 1
        except StorageError as e:
            logger.warning("blob_cleanup_failed", path=path, error=e.message)
    return released


def _authorize_file_change(db: Session, principal: Principal, report: Report) -> None:
    if not principal.is_admin:
        raise AuthorizationDenied("Only admins can change report files", reason="role")
    authorize_or_raise(db, principal, report)


def attach_files(
    db: Session,
    storage: StorageProvider,
    principal: Principal,
    report_id: uuid.UUID,
    files: Sequence[IncomingFile],
) -> Report:
    report = _load_report(db, report_id)
    _authorize_file_change(db, principal, report)
    if not files:
        raise ValidationError("No files provided")
    check_upload_limits(files, existing=len(report.files))
    records = store_files(storage, report, files)
    try:
        db.commit()
    except Exception:
        db.rollback()
        release_blobs(storage, [r.storage_path for r in records])
        raise
    db.refresh(report)
    logger.info("report_files_attached", report_id=str(report.id), count=len(records))
    return report


def detach_file(
    db: Session,
    storage: StorageProvider,
    principal: Principal,
    report_id: uuid.UUID,
    file_id: uuid.UUID,
) -> Report:
    report = _load_report(db, report_id)
    _authorize_file_change(db, principal, report)
    record = next((f for f in report.files if f.id == file_id), None)
    if record is None:
        raise NotFound("File", file_id)
    path = record.storage_path
    report.files.remove(record)
    db.commit()
    db.refresh(report)
    if not release_blobs(storage, [path]):
        logger.info("blob_not_released", report_id=str(report.id), path=path)
    logger.info("report_file_detached", report_id=str(report.id), file_id=str(file_id))
    return report


def load_attachments(storage: StorageProvider, report: Report, prefix: str = "") -> List[Attachment]:
    if not report.files:
        raise ValidationError("Report has no files attached")
    return [
        Attachment(
            filename=f"{prefix}{f.original_name}",
            content=storage.read(f.storage_path),
            mime_type=f.mime_type or "application/octet-stream",
        )
        for f in report.files
    ]


# Delivery

@dataclass
class Recipient:
    email: str
    name: str
    unit: Optional[Unit] = None


def resolve_customer_recipient(db: Session, report: Report) -> Recipient:
    """Pick the end customer for ``report``; the unit's customer wins over a direct customer."""
    unit = None
    if report.unit_id is not None:
        unit = db.get(Unit, report.unit_id)
        if unit is None:
            raise NotFound("Unit", report.unit_id)
        if unit.customer_id is not None:
            customer = db.get(Customer, unit.customer_id)
            if customer is None:
                raise NotFound("Customer", unit.customer_id)
            return Recipient(email=customer.email, name=customer.name, unit=unit)
        if unit.partner_id is not None:
            raise ValidationError("Cannot deliver to a partner via the customer-send path")
    if report.customer_id is not None:
        customer = db.get(Customer, report.customer_id)
        if customer is None:
            raise NotFound("Customer", report.customer_id)
        if not customer.email:
            raise ValidationError("No deliverable recipient for this report")
        return Recipient(email=customer.email, name=customer.name, unit=unit)
    raise ValidationError("No deliverable recipient for this report")


def _details(report: Report, extra: Sequence[str] = ()) -> str:
    items = [
        f"Report Number: {html.escape(report.report_number)}",
        f"VN Number: {html.escape(report.vn_number)}",
        f"Status: {html.escape(report.status)}",
        *extra,
    ]
    if report.admin_note:
        items.append(f"Admin Note: {html.escape(report.admin_note)}")
    return f"<ul>{render_list(items)}</ul>"


def send_to_customer(
    db: Session,
    storage: StorageProvider,
    mailer: Mailer,
    principal: Principal,
    report_id: uuid.UUID,
) -> Report:
    report = _load_report(db, report_id)
    authorize_or_raise(db, principal, report)
    recipient = resolve_customer_recipient(db, report)
    attachments = load_attachments(storage, report)
    partner = db.get(Partner, report.partner_id)
    extra = []
    if partner is not None:
        extra += [f"Partner: {html.escape(partner.name)}", f"Partner Email: {html.escape(partner.email)}"]
    if recipient.unit is not None:
        extra.append(f"Unit: {html.escape(recipient.unit.unit_name)}")
    if report.partner_note:
        extra.append(f"Partner Note: {html.escape(report.partner_note)}")
    body = (
        "<h2>Report Details</h2>"
        f"<p>Dear {html.escape(recipient.name)},</p>"
        "<p>A new report is available for your review with the following details:</p>"
        f"{_details(report, extra)}"
        "<p>The report is attached to this email for your reference.</p>"
        "<p>If you have any questions, please contact your partner using the email address provided above.</p>"
    )
    # Persist the read flag only once the mail relay has accepted the message
    mailer.send(recipient.email, f"Report {report.report_number} Available", body, attachments)
    report.is_new = False
    db.commit()
    db.refresh(report)
    logger.info("report_sent_to_customer", report_id=str(report.id), to=recipient.email)
    return report


def _partner_notice(db: Session, report: Report, partner: Partner, attached: bool) -> str:
    extra = []
    customer = db.get(Customer, report.customer_id) if report.customer_id else None
    extra.append(f"Customer: {html.escape(customer.name) if customer else 'N/A'}")
    if report.unit_id:
        unit = db.get(Unit, report.unit_id)
        if unit is not None:
            extra.append(f"Unit: {html.escape(unit.unit_name)}")
    tail = (
        "<p>The report is attached to this email for your reference.</p>"
        if attached else
        "<p>Please log in to your dashboard to view the full report.</p>"
    )
    return (
        "<h2>New Report Available</h2>"
        f"<p>Hello {html.escape(partner.name)},</p>"
        "<p>A new report has been generated with the following details:</p>"
        f"{_details(report, extra)}"
        f"{tail}"
    )


def notify_partner(db: Session, mailer: Mailer, report: Report) -> None:
    """New-report notice to the owning partner (no attachments). Raises DeliveryError."""
    partner = db.get(Partner, report.partner_id)
    if partner is None:
        raise NotFound("Partner", report.partner_id)
    mailer.send(partner.email, f"New Report Available - {report.report_number}", _partner_notice(db, report, partner, False))
    logger.info("partner_notified", report_id=str(report.id), partner_id=str(partner.id))


def send_to_partner(
    db: Session,
    storage: StorageProvider,
    mailer: Mailer,
    principal: Principal,
    report_id: uuid.UUID,
) -> Report:
    report = _load_report(db, report_id)
    authorize_or_raise(db, principal, report)
    partner = db.get(Partner, report.partner_id)
    if partner is None:
        raise ValidationError("Report has no associated partner")
    attachments = load_attachments(storage, report)
    mailer.send(
        partner.email,
        f"New Report Available - {report.report_number}",
        _partner_notice(db, report, partner, True),
        attachments,
    )
    logger.info("report_sent_to_partner", report_id=str(report.id), partner_id=str(partner.id))
    return report


def _load_report(db: Session, report_id: uuid.UUID) -> Report:
    report = db.get(Report, report_id)
    if report is None:
        raise NotFound("Report", report_id)
    return report
