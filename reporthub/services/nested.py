"""
Nested dashboard trees (partners -> customers -> units -> reports).

Each level is fetched with one batched IN query and stitched together in memory.
"""
from __future__ import annotations

import uuid
from collections import defaultdict
from typing import Dict, List, Sequence

from sqlalchemy.orm import Session

from ..auth.security import Principal
from ..errors import NotFound
from ..models.models import Customer, Partner, Report, Unit


def _report_row(r: Report) -> dict:
    return {
        "id": str(r.id),
        "report_number": r.report_number,
        "vn_number": r.vn_number,
        "status": r.status,
        "is_new": r.is_new,
    }


def _group(rows, key) -> Dict[uuid.UUID, list]:
    out: Dict[uuid.UUID, list] = defaultdict(list)
    for row in rows:
        out[key(row)].append(row)
    return out


def build_partner_trees(db: Session, partners: Sequence[Partner]) -> List[dict]:
    partner_ids = [p.id for p in partners]
    customers = db.query(Customer).filter(Customer.partner_id.in_(partner_ids)).order_by(Customer.name.asc()).all()
    customer_ids = [c.id for c in customers]
    partner_units = db.query(Unit).filter(Unit.partner_id.in_(partner_ids)).order_by(Unit.unit_name.asc()).all()
    customer_units = db.query(Unit).filter(Unit.customer_id.in_(customer_ids)).order_by(Unit.unit_name.asc()).all()
    unit_ids = [u.id for u in partner_units] + [u.id for u in customer_units]

    unit_reports = _group(
        db.query(Report).filter(Report.unit_id.in_(unit_ids)).order_by(Report.created_at.desc()).all(),
        lambda r: r.unit_id,
    )
    customer_reports = _group(
        db.query(Report)
        .filter(Report.customer_id.in_(customer_ids), Report.unit_id.is_(None))
        .order_by(Report.created_at.desc())
        .all(),
        lambda r: r.customer_id,
    )
    partner_reports = _group(
        db.query(Report)
        .filter(Report.partner_id.in_(partner_ids), Report.customer_id.is_(None), Report.unit_id.is_(None))
        .order_by(Report.created_at.desc())
        .all(),
        lambda r: r.partner_id,
    )

    def unit_node(u: Unit) -> dict:
        return {
            "id": str(u.id),
            "unit_name": u.unit_name,
            "reports": [_report_row(r) for r in unit_reports.get(u.id, [])],
        }

    units_by_customer = _group(customer_units, lambda u: u.customer_id)
    units_by_partner = _group(partner_units, lambda u: u.partner_id)
    customers_by_partner = _group(customers, lambda c: c.partner_id)

    return [
        {
            "id": str(p.id),
            "name": p.name,
            "customers": [
                {
                    "id": str(c.id),
                    "name": c.name,
                    "units": [unit_node(u) for u in units_by_customer.get(c.id, [])],
                    "reports": [_report_row(r) for r in customer_reports.get(c.id, [])],
                }
                for c in customers_by_partner.get(p.id, [])
            ],
            "units": [unit_node(u) for u in units_by_partner.get(p.id, [])],
            "reports": [_report_row(r) for r in partner_reports.get(p.id, [])],
        }
        for p in partners
    ]


def admin_nested_tree(db: Session, admin: Principal) -> List[dict]:
    partners = db.query(Partner).filter(Partner.admin_id == admin.id).order_by(Partner.name.asc()).all()
    return build_partner_trees(db, partners)


def partner_nested_tree(db: Session, partner: Principal) -> List[dict]:
    entity = db.get(Partner, partner.id)
    if entity is None:
        raise NotFound("Partner", partner.id)
    # A one-element list keeps the same shape as the admin view
    return build_partner_trees(db, [entity])


def customers_nested(db: Session, admin: Principal) -> List[dict]:
    """Flat list of the admin's customers, each with its units and reports, sorted by name."""
    customers = [
        dict(c, partner_id=tree["id"], partner_name=tree["name"])
        for tree in admin_nested_tree(db, admin)
        for c in tree["customers"]
    ]
    return sorted(customers, key=lambda c: (c["name"] or "").lower())
