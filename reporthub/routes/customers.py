import uuid
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..auth.security import Principal, require_admin, require_any
from ..db import get_db
from ..schemas.auth import MessageResponse
from ..schemas.customers import CustomerCreate, CustomerResponse, CustomerUpdate
from ..services import hierarchy, nested
from ..storage.factory import get_storage
from ..storage.provider import StorageProvider


router = APIRouter(prefix="/api/customers", tags=["customers"])


@router.get("", response_model=List[CustomerResponse])
def list_customers(db: Session = Depends(get_db), admin: Principal = Depends(require_admin)):
    return hierarchy.list_customers(db, admin)


@router.post("", response_model=CustomerResponse, status_code=status.HTTP_201_CREATED)
def create_customer(body: CustomerCreate, db: Session = Depends(get_db), admin: Principal = Depends(require_admin)):
    return hierarchy.create_customer(db, admin, name=body.name, email=body.email, partner_id=body.partner_id)


@router.get("/nested")
def customers_nested(db: Session = Depends(get_db), admin: Principal = Depends(require_admin)):
    return nested.customers_nested(db, admin)


@router.get("/partner/{partner_id}", response_model=List[CustomerResponse])
def customers_by_partner(
    partner_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_any),
):
    return hierarchy.list_partner_customers(db, principal, partner_id)


@router.get("/{customer_id}", response_model=CustomerResponse)
def get_customer(customer_id: uuid.UUID, db: Session = Depends(get_db), principal: Principal = Depends(require_any)):
    return hierarchy.get_customer(db, principal, customer_id)


@router.put("/{customer_id}", response_model=CustomerResponse)
def update_customer(
    customer_id: uuid.UUID,
    body: CustomerUpdate,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    return hierarchy.update_customer(db, admin, customer_id, body.model_dump(exclude_unset=True))


@router.delete("/{customer_id}", response_model=MessageResponse)
def delete_customer(
    customer_id: uuid.UUID,
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    admin: Principal = Depends(require_admin),
):
    counts = hierarchy.delete_customer(db, storage, admin, customer_id)
    return MessageResponse(message="Customer and all associated data deleted successfully", detail=counts)
