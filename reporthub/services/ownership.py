"""
Ownership resolution for the Admin -> Partner -> Customer -> Unit -> Report chain.

Every check re-reads the parent rows from the Session it was given; nothing is
cached between calls, so a reassignment is visible to the very next check.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from ..auth.security import Principal, ROLE_ADMIN, ROLE_PARTNER
from ..errors import AuthorizationDenied
from ..models.models import Admin, Customer, Partner, Report, Unit


NOT_OWNER = "not_owner"
BROKEN_REFERENCE = "broken_reference"
UNSUPPORTED_ROLE = "unsupported_role"
UNSUPPORTED_TARGET = "unsupported_target"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def deny(reason: str) -> Decision:
    return Decision(False, reason)


class _BrokenReference(Exception):
    pass


class _UnsupportedTarget(Exception):
    pass


class OwnershipResolver:
    def __init__(self, db: Session):
        self.db = db

    def _load(self, model, entity_id: Optional[uuid.UUID]):
        if entity_id is None:
            raise _BrokenReference(model.__name__)
        entity = self.db.get(model, entity_id)
        if entity is None:
            raise _BrokenReference(model.__name__)
        return entity

    def owning_partner_id(self, target) -> uuid.UUID:
        """Direct owning Partner id of ``target`` (one hop for customer-level units)."""
        if isinstance(target, Partner):
            return target.id
        if isinstance(target, (Customer, Report)):
            if target.partner_id is None:
                raise _BrokenReference("Partner")
            return target.partner_id
        if isinstance(target, Unit):
            if target.customer_id is not None:
                return self._load(Customer, target.customer_id).partner_id
            if target.partner_id is not None:
                return target.partner_id
            raise _BrokenReference("Unit")
        raise _UnsupportedTarget(type(target).__name__)

    def owning_admin_id(self, target) -> uuid.UUID:
        if isinstance(target, Admin):
            return target.id
        partner = self._load(Partner, self.owning_partner_id(target))
        if partner.admin_id is None:
            raise _BrokenReference("Admin")
        return partner.admin_id

    def authorize(self, principal: Principal, target) -> Decision:
        try:
            if principal.role == ROLE_PARTNER:
                if isinstance(target, Admin):
                    return deny(NOT_OWNER)
                return ALLOW if self.owning_partner_id(target) == principal.id else deny(NOT_OWNER)
            if principal.role == ROLE_ADMIN:
                return ALLOW if self.owning_admin_id(target) == principal.id else deny(NOT_OWNER)
        except _BrokenReference:
            return deny(BROKEN_REFERENCE)
        except _UnsupportedTarget:
            return deny(UNSUPPORTED_TARGET)
        return deny(UNSUPPORTED_ROLE)


def ensure_allowed(decision: Decision, message: str = "Not authorized") -> None:
    if not decision.allowed:
        if decision.reason == BROKEN_REFERENCE:
            message = f"{message}: ownership chain has a broken reference"
        raise AuthorizationDenied(message, reason=decision.reason)


def authorize_or_raise(db: Session, principal: Principal, target, message: str = "Not authorized") -> None:
    ensure_allowed(OwnershipResolver(db).authorize(principal, target), message)
