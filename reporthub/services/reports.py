"""
Report store: create, read, update and delete reports.

Status, read-flag, file and delivery rules live in ``services.lifecycle``.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import structlog
from sqlalchemy.orm import Session

from ..auth.security import Principal
from ..errors import ConflictError, DeliveryError, NotFound, StorageError, ValidationError
from ..models.models import Customer, Partner, Report, ReportFile, Unit
from ..storage.provider import StorageProvider
from . import lifecycle
from .delivery import Mailer
from .hierarchy import admin_partner_ids, owning_partner_of_unit
from .ownership import OwnershipResolver, authorize_or_raise


logger = structlog.get_logger(__name__)


@dataclass
class CreateResult:
    report: Report
    notification: str  # "not_requested" | "sent" | "failed"

    @property
    def message(self) -> str:
        if self.notification == "failed":
            return "Report saved, notification failed"
        return "Report created successfully"


def get_report(db: Session, principal: Principal, report_id: uuid.UUID) -> Report:
    report = db.get(Report, report_id)
    if report is None:
        raise NotFound("Report", report_id)
    authorize_or_raise(db, principal, report, "Not authorized to access this report")
    return report


def list_reports_for_admin(db: Session, admin: Principal) -> List[Report]:
    return (
        db.query(Report)
        .filter(Report.partner_id.in_(admin_partner_ids(db, admin)))
        .order_by(Report.created_at.desc())
        .all()
    )


def list_reports_for_partner(db: Session, partner: Principal) -> List[Report]:
    return db.query(Report).filter(Report.partner_id == partner.id).order_by(Report.created_at.desc()).all()


def _check_associations(
    db: Session,
    principal: Principal,
    partner_id: uuid.UUID,
    customer_id: Optional[uuid.UUID],
    unit_id: Optional[uuid.UUID],
) -> None:
    """Partner must be the admin's; customer and unit must hang off that partner."""
    resolver = OwnershipResolver(db)
    partner = db.get(Partner, partner_id)
    if partner is None:
        raise NotFound("Partner", partner_id)
    if not resolver.authorize(principal, partner).allowed:
        raise ConflictError("Not authorized to assign report to this partner")
    customer = None
    if customer_id is not None:
        customer = db.get(Customer, customer_id)
        if customer is None:
            raise NotFound("Customer", customer_id)
        if customer.partner_id != partner.id:
            raise ConflictError("Customer does not belong to the report's partner")
    if unit_id is not None:
        unit = db.get(Unit, unit_id)
        if unit is None:
            raise NotFound("Unit", unit_id)
        if owning_partner_of_unit(db, unit)[0] != partner.id:
            raise ConflictError("Unit does not belong to the report's partner")
        if customer is not None and unit.customer_id is not None and unit.customer_id != customer.id:
            raise ConflictError("Unit does not belong to the report's customer")


def create_report(
    db: Session,
    storage: StorageProvider,
    mailer: Mailer,
    admin: Principal,
    *,
    report_number: str,
    vn_number: str,
    partner_id: uuid.UUID,
    customer_id: Optional[uuid.UUID] = None,
    unit_id: Optional[uuid.UUID] = None,
    admin_note: Optional[str] = None,
    status: Optional[str] = None,
    files: Sequence[lifecycle.IncomingFile] = (),
    send_email: bool = False,
) -> CreateResult:
    number = lifecycle.normalize_report_number(report_number)
    vn = (vn_number or "").strip()
    if not vn:
        raise ValidationError("VN number is required")
    _check_associations(db, admin, partner_id, customer_id, unit_id)
    lifecycle.check_upload_limits(files)

    report = Report(
        report_number=number,
        vn_number=vn,
        admin_note=admin_note,
        status=lifecycle.validate_status(status or lifecycle.STATUS_ACTIVE),
        is_new=True,
        partner_id=partner_id,
        customer_id=customer_id,
        unit_id=unit_id,
    )
    records: List[ReportFile] = []
    try:
        records = lifecycle.store_files(storage, report, files)
        db.add(report)
        db.commit()
    except StorageError:
        db.rollback()
        raise
    except Exception:
        db.rollback()
        lifecycle.release_blobs(storage, [r.storage_path for r in records])
        raise
    db.refresh(report)
    logger.info("report_created", report_id=str(report.id), report_number=number, files=len(records))

    notification = "not_requested"
    if send_email:
        try:
            lifecycle.notify_partner(db, mailer, report)
            notification = "sent"
        except (DeliveryError, NotFound) as e:
            logger.warning("report_notification_failed", report_id=str(report.id), error=e.message)
            notification = "failed"
    return CreateResult(report=report, notification=notification)


def _pick_id(data: dict, key: str, current: Optional[uuid.UUID], clearable: bool = True) -> Optional[uuid.UUID]:
    value = data.get(key)
    if value is None:
        return current
    if value == "":
        return None if clearable else current
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise ValidationError(f"Invalid {key}")


def update_report(db: Session, admin: Principal, report_id: uuid.UUID, data: dict) -> Report:
    """Apply an admin update. ``unit_id`` of "" clears the unit; other keys left out are untouched."""
    report = get_report(db, admin, report_id)

    partner_id = _pick_id(data, "partner_id", report.partner_id, clearable=False)
    customer_id = _pick_id(data, "customer_id", report.customer_id)
    unit_id = _pick_id(data, "unit_id", report.unit_id)
    if (partner_id, customer_id, unit_id) != (report.partner_id, report.customer_id, report.unit_id):
        _check_associations(db, admin, partner_id, customer_id, unit_id)

    if data.get("report_number"):
        report.report_number = lifecycle.normalize_report_number(data["report_number"])
    if data.get("vn_number"):
        report.vn_number = data["vn_number"].strip()
    if data.get("admin_note") is not None:
        report.admin_note = data["admin_note"]
    if data.get("partner_note") is not None:
        report.partner_note = data["partner_note"]
    if data.get("status"):
        lifecycle.apply_status(report, data["status"])
    report.partner_id = partner_id
    report.customer_id = customer_id
    report.unit_id = unit_id
    db.commit()
    db.refresh(report)
    logger.info("report_updated", report_id=str(report.id))
    return report


def update_partner_note(db: Session, partner: Principal, report_id: uuid.UUID, partner_note: Optional[str]) -> Report:
    report = get_report(db, partner, report_id)
    report.partner_note = partner_note
    db.commit()
    db.refresh(report)
    logger.info("partner_note_updated", report_id=str(report.id))
    return report


def delete_report(db: Session, storage: StorageProvider, admin: Principal, report_id: uuid.UUID) -> None:
    report = get_report(db, admin, report_id)
    paths = [f.storage_path for f in report.files]
    db.delete(report)
    db.commit()
    lifecycle.release_blobs(storage, paths)
    logger.info("report_deleted", report_id=str(report_id), files=len(paths))


def download_file(
    db: Session,
    storage: StorageProvider,
    principal: Principal,
    report_id: uuid.UUID,
    file_id: uuid.UUID,
) -> Tuple[ReportFile, bytes]:
    report = get_report(db, principal, report_id)
    record = next((f for f in report.files if f.id == file_id), None)
    if record is None:
        raise NotFound("File", file_id)
    return record, storage.read(record.storage_path)
