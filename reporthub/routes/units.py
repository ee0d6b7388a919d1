import uuid
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..auth.security import Principal, require_admin, require_any
from ..db import get_db
from ..schemas.auth import MessageResponse
from ..schemas.reports import ReportSummary
from ..schemas.units import UnitCreate, UnitDetailResponse, UnitResponse, UnitUpdate
from ..services import hierarchy
from ..storage.factory import get_storage
from ..storage.provider import StorageProvider


router = APIRouter(prefix="/api/units", tags=["units"])


@router.get("", response_model=List[UnitResponse])
def list_units(db: Session = Depends(get_db), admin: Principal = Depends(require_admin)):
    return hierarchy.list_units(db, admin)


@router.post("", response_model=UnitResponse, status_code=status.HTTP_201_CREATED)
def create_unit(body: UnitCreate, db: Session = Depends(get_db), admin: Principal = Depends(require_admin)):
    return hierarchy.create_unit(
        db, admin, unit_name=body.unit_name, customer_id=body.customer_id, partner_id=body.partner_id
    )


@router.get("/customer/{customer_id}", response_model=List[UnitResponse])
def units_by_customer(
    customer_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
):
    return hierarchy.list_customer_units(db, principal, customer_id)


@router.get("/partner/{partner_id}", response_model=List[UnitResponse])
def units_by_partner(
    partner_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
):
    return hierarchy.list_partner_units(db, principal, partner_id)


@router.get("/{unit_id}", response_model=UnitDetailResponse)
def get_unit(unit_id: uuid.UUID, db: Session = Depends(get_db), principal: Principal = Depends(require_any)):
    unit = hierarchy.get_unit(db, principal, unit_id)
    out = UnitDetailResponse.model_validate(unit)
    out.reports = [ReportSummary.model_validate(r) for r in hierarchy.unit_reports(db, unit)]
    return out


@router.put("/{unit_id}", response_model=UnitResponse)
def update_unit(
    unit_id: uuid.UUID,
    body: UnitUpdate,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    return hierarchy.update_unit(
        db, admin, unit_id, unit_name=body.unit_name, customer_id=body.customer_id, partner_id=body.partner_id
    )


@router.delete("/{unit_id}", response_model=MessageResponse)
def delete_unit(
    unit_id: uuid.UUID,
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    admin: Principal = Depends(require_admin),
):
    counts = hierarchy.delete_unit(db, storage, admin, unit_id)
    return MessageResponse(message="Unit and associated reports deleted successfully", detail=counts)
