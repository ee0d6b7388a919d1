"""
Hierarchy store: partners, customers and units.

Owns the Unit single-owner invariant and the cascading deletes. The database
part of every cascade runs in one transaction; blobs of removed reports are
released only after the commit succeeds.
"""
from __future__ import annotations

import uuid
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..auth.security import Principal
from ..errors import ConflictError, NotFound, PartialCascadeFailure, ValidationError
from ..models.models import Customer, Partner, Report, ReportFile, Unit
from ..storage.provider import StorageProvider
from .identity import normalize_email
from .lifecycle import release_blobs
from .ownership import OwnershipResolver, authorize_or_raise


logger = structlog.get_logger(__name__)


def _get(db: Session, model, entity_id, label: str):
    entity = db.get(model, entity_id)
    if entity is None:
        raise NotFound(label, entity_id)
    return entity


def admin_partner_ids(db: Session, admin: Principal) -> List[uuid.UUID]:
    return [pid for (pid,) in db.query(Partner.id).filter(Partner.admin_id == admin.id).all()]


# Customers

def get_customer(db: Session, principal: Principal, customer_id: uuid.UUID) -> Customer:
    customer = _get(db, Customer, customer_id, "Customer")
    authorize_or_raise(db, principal, customer)
    return customer


def list_customers(db: Session, admin: Principal) -> List[Customer]:
    partner_ids = admin_partner_ids(db, admin)
    return (
        db.query(Customer)
        .filter(Customer.partner_id.in_(partner_ids))
        .order_by(Customer.created_at.asc())
        .all()
    )


def list_partner_customers(db: Session, principal: Principal, partner_id: uuid.UUID) -> List[Customer]:
    partner = _get(db, Partner, partner_id, "Partner")
    authorize_or_raise(db, principal, partner, "Not authorized to access these customers")
    return db.query(Customer).filter(Customer.partner_id == partner.id).order_by(Customer.created_at.asc()).all()


def create_customer(db: Session, admin: Principal, *, name: str, email: str, partner_id: uuid.UUID) -> Customer:
    partner = _get(db, Partner, partner_id, "Partner")
    authorize_or_raise(db, admin, partner)
    customer = Customer(name=name.strip(), email=normalize_email(email), partner_id=partner.id)
    db.add(customer)
    db.commit()
    db.refresh(customer)
    logger.info("customer_created", customer_id=str(customer.id), partner_id=str(partner.id))
    return customer


def update_customer(db: Session, admin: Principal, customer_id: uuid.UUID, data: dict) -> Customer:
    customer = get_customer(db, admin, customer_id)
    if data.get("name"):
        customer.name = data["name"].strip()
    if data.get("email"):
        customer.email = normalize_email(data["email"])
    db.commit()
    db.refresh(customer)
    logger.info("customer_updated", customer_id=str(customer.id))
    return customer


# Units

def validate_unit_owner(customer_id: Optional[uuid.UUID], partner_id: Optional[uuid.UUID]) -> None:
    if customer_id is None and partner_id is None:
        raise ValidationError("Either customerId or partnerId must be provided")
    if customer_id is not None and partner_id is not None:
        raise ValidationError("Unit cannot be associated with both customer and partner")


def get_unit(db: Session, principal: Principal, unit_id: uuid.UUID) -> Unit:
    unit = _get(db, Unit, unit_id, "Unit")
    authorize_or_raise(db, principal, unit, "Not authorized to access this unit")
    return unit


def unit_reports(db: Session, unit: Unit) -> List[Report]:
    return db.query(Report).filter(Report.unit_id == unit.id).order_by(Report.created_at.desc()).all()


def list_units(db: Session, admin: Principal) -> List[Unit]:
    partner_ids = admin_partner_ids(db, admin)
    customer_ids = db.query(Customer.id).filter(Customer.partner_id.in_(partner_ids))
    return (
        db.query(Unit)
        .filter(or_(Unit.partner_id.in_(partner_ids), Unit.customer_id.in_(customer_ids)))
        .order_by(Unit.created_at.asc())
        .all()
    )


def list_customer_units(db: Session, principal: Principal, customer_id: uuid.UUID) -> List[Unit]:
    customer = _get(db, Customer, customer_id, "Customer")
    authorize_or_raise(db, principal, customer, "Not authorized to access these units")
    return db.query(Unit).filter(Unit.customer_id == customer.id).order_by(Unit.created_at.asc()).all()


def list_partner_units(db: Session, principal: Principal, partner_id: uuid.UUID) -> List[Unit]:
    partner = _get(db, Partner, partner_id, "Partner")
    authorize_or_raise(db, principal, partner, "Not authorized to access these units")
    return db.query(Unit).filter(Unit.partner_id == partner.id).order_by(Unit.created_at.asc()).all()


def create_unit(
    db: Session,
    admin: Principal,
    *,
    unit_name: str,
    customer_id: Optional[uuid.UUID] = None,
    partner_id: Optional[uuid.UUID] = None,
) -> Unit:
    validate_unit_owner(customer_id, partner_id)
    if customer_id is not None:
        owner = _get(db, Customer, customer_id, "Customer")
    else:
        owner = _get(db, Partner, partner_id, "Partner")
    authorize_or_raise(db, admin, owner)
    unit = Unit(unit_name=unit_name.strip(), customer_id=customer_id, partner_id=partner_id)
    db.add(unit)
    db.commit()
    db.refresh(unit)
    logger.info("unit_created", unit_id=str(unit.id), customer_id=str(customer_id), partner_id=str(partner_id))
    return unit


def _reassignment_target(db: Session, admin: Principal, model, target_id: uuid.UUID, label: str):
    target = _get(db, model, target_id, f"New {label.lower()}")
    decision = OwnershipResolver(db).authorize(admin, target)
    if not decision.allowed:
        raise ConflictError(f"Cannot assign unit to a {label.lower()} outside your organization")
    return target


def owning_partner_of_unit(db: Session, unit: Unit) -> Tuple[uuid.UUID, Optional[uuid.UUID]]:
    if unit.customer_id is not None:
        customer = _get(db, Customer, unit.customer_id, "Customer")
        return customer.partner_id, customer.id
    return unit.partner_id, None


def update_unit(
    db: Session,
    admin: Principal,
    unit_id: uuid.UUID,
    *,
    unit_name: Optional[str] = None,
    customer_id: Optional[uuid.UUID] = None,
    partner_id: Optional[uuid.UUID] = None,
) -> Unit:
    unit = get_unit(db, admin, unit_id)
    if customer_id is not None and partner_id is not None:
        validate_unit_owner(customer_id, partner_id)

    moved = False
    if customer_id is not None and customer_id != unit.customer_id:
        _reassignment_target(db, admin, Customer, customer_id, "Customer")
        # Both references change in the same flush
        unit.customer_id = customer_id
        unit.partner_id = None
        moved = True
    elif partner_id is not None and partner_id != unit.partner_id:
        _reassignment_target(db, admin, Partner, partner_id, "Partner")
        unit.partner_id = partner_id
        unit.customer_id = None
        moved = True

    if unit_name:
        unit.unit_name = unit_name.strip()
    validate_unit_owner(unit.customer_id, unit.partner_id)

    if moved:
        new_partner_id, new_customer_id = owning_partner_of_unit(db, unit)
        realigned = (
            db.query(Report)
            .filter(Report.unit_id == unit.id)
            .update({Report.partner_id: new_partner_id, Report.customer_id: new_customer_id}, synchronize_session=False)
        )
        logger.info("unit_reassigned", unit_id=str(unit.id), partner_id=str(new_partner_id), reports_realigned=realigned)
    db.commit()
    db.refresh(unit)
    return unit


# Cascading deletes

def _run_cascade(db: Session, label: str, stages: Sequence[Tuple[str, Callable[[], int]]]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    stage = "start"
    try:
        for stage, fn in stages:
            counts[stage] = fn()
        stage = "commit"
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("cascade_delete_failed", entity=label, stage=stage, error=str(e))
        raise PartialCascadeFailure(label, stage)
    return counts


def _report_stages(db: Session, report_filter) -> Tuple[List[str], List[Tuple[str, Callable[[], int]]]]:
    report_ids = [rid for (rid,) in db.query(Report.id).filter(report_filter).all()]
    paths = [p for (p,) in db.query(ReportFile.storage_path).filter(ReportFile.report_id.in_(report_ids)).all()]
    stages = [
        ("report_files", lambda: db.query(ReportFile).filter(ReportFile.report_id.in_(report_ids)).delete(synchronize_session=False)),
        ("reports", lambda: db.query(Report).filter(Report.id.in_(report_ids)).delete(synchronize_session=False)),
    ]
    return paths, stages


def delete_unit(db: Session, storage: StorageProvider, admin: Principal, unit_id: uuid.UUID) -> Dict[str, int]:
    unit = get_unit(db, admin, unit_id)
    paths, stages = _report_stages(db, Report.unit_id == unit.id)
    stages.append(("units", lambda: db.query(Unit).filter(Unit.id == unit.id).delete(synchronize_session=False)))
    counts = _run_cascade(db, "unit", stages)
    counts["blobs"] = release_blobs(storage, paths)
    logger.info("cascade_delete_completed", entity="unit", entity_id=str(unit_id), **counts)
    return counts


def delete_customer(db: Session, storage: StorageProvider, admin: Principal, customer_id: uuid.UUID) -> Dict[str, int]:
    customer = get_customer(db, admin, customer_id)
    unit_ids = [uid for (uid,) in db.query(Unit.id).filter(Unit.customer_id == customer.id).all()]
    paths, stages = _report_stages(db, or_(Report.customer_id == customer.id, Report.unit_id.in_(unit_ids)))
    stages += [
        ("units", lambda: db.query(Unit).filter(Unit.id.in_(unit_ids)).delete(synchronize_session=False)),
        ("customers", lambda: db.query(Customer).filter(Customer.id == customer.id).delete(synchronize_session=False)),
    ]
    counts = _run_cascade(db, "customer", stages)
    counts["blobs"] = release_blobs(storage, paths)
    logger.info("cascade_delete_completed", entity="customer", entity_id=str(customer_id), **counts)
    return counts


def delete_partner(db: Session, storage: StorageProvider, admin: Principal, partner_id: uuid.UUID) -> Dict[str, int]:
    partner = _get(db, Partner, partner_id, "Partner")
    authorize_or_raise(db, admin, partner)
    customer_ids = [cid for (cid,) in db.query(Customer.id).filter(Customer.partner_id == partner.id).all()]
    unit_ids = [
        uid for (uid,) in db.query(Unit.id)
        .filter(or_(Unit.partner_id == partner.id, Unit.customer_id.in_(customer_ids)))
        .all()
    ]
    paths, stages = _report_stages(
        db,
        or_(
            Report.partner_id == partner.id,
            Report.customer_id.in_(customer_ids),
            Report.unit_id.in_(unit_ids),
        ),
    )
    stages += [
        ("units", lambda: db.query(Unit).filter(Unit.id.in_(unit_ids)).delete(synchronize_session=False)),
        ("customers", lambda: db.query(Customer).filter(Customer.id.in_(customer_ids)).delete(synchronize_session=False)),
        ("partners", lambda: db.query(Partner).filter(Partner.id == partner.id).delete(synchronize_session=False)),
    ]
    counts = _run_cascade(db, "partner", stages)
    counts["blobs"] = release_blobs(storage, paths)
    logger.info("cascade_delete_completed", entity="partner", entity_id=str(partner_id), **counts)
    return counts
