import uuid
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..auth.security import Principal, require_admin, require_partner
from ..db import get_db
from ..schemas.auth import MessageResponse
from ..schemas.partners import PartnerCreate, PartnerPasswordUpdate, PartnerResponse, PartnerUpdate
from ..services import hierarchy, identity, nested
from ..storage.factory import get_storage
from ..storage.provider import StorageProvider


router = APIRouter(prefix="/api/partners", tags=["partners"])


@router.get("", response_model=List[PartnerResponse])
def list_partners(db: Session = Depends(get_db), admin: Principal = Depends(require_admin)):
    return identity.list_partners(db, admin)


@router.post("", response_model=PartnerResponse, status_code=status.HTTP_201_CREATED)
def create_partner(body: PartnerCreate, db: Session = Depends(get_db), admin: Principal = Depends(require_admin)):
    return identity.create_partner(
        db,
        admin,
        name=body.name,
        email=body.email,
        password=body.password,
        person_name=body.person_name,
        person_contact=body.person_contact,
    )


@router.get("/nested")
def partners_nested(db: Session = Depends(get_db), admin: Principal = Depends(require_admin)):
    return nested.admin_nested_tree(db, admin)


@router.get("/me/nested")
def my_nested(db: Session = Depends(get_db), partner: Principal = Depends(require_partner)):
    return nested.partner_nested_tree(db, partner)


@router.get("/{partner_id}", response_model=PartnerResponse)
def get_partner(partner_id: uuid.UUID, db: Session = Depends(get_db), admin: Principal = Depends(require_admin)):
    return identity.get_partner(db, admin, partner_id)


@router.put("/{partner_id}", response_model=PartnerResponse)
def update_partner(
    partner_id: uuid.UUID,
    body: PartnerUpdate,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    return identity.update_partner(db, admin, partner_id, body.model_dump(exclude_unset=True))


@router.put("/{partner_id}/password", response_model=MessageResponse)
def update_partner_password(
    partner_id: uuid.UUID,
    body: PartnerPasswordUpdate,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    identity.update_partner_password(db, admin, partner_id, body.password)
    return MessageResponse(message="Password updated successfully")


@router.delete("/{partner_id}", response_model=MessageResponse)
def delete_partner(
    partner_id: uuid.UUID,
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    admin: Principal = Depends(require_admin),
):
    counts = hierarchy.delete_partner(db, storage, admin, partner_id)
    return MessageResponse(message="Partner and all associated data deleted successfully", detail=counts)
