"""
Identity store: admin and partner accounts, credentials and password resets.
"""
from __future__ import annotations

import hashlib
import html
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from ..auth.security import (
    Principal,
    ROLE_ADMIN,
    ROLES,
    get_password_hash,
    principal_for,
    verify_password,
)
from ..config import settings
from ..errors import (
    AuthenticationFailure,
    AuthorizationDenied,
    ConflictError,
    DeliveryError,
    NotFound,
    ValidationError,
)
from ..models.models import Admin, Partner, PasswordReset
from .delivery import Mailer
from .ownership import authorize_or_raise


logger = structlog.get_logger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _model_for(role: str):
    if role not in ROLES:
        raise ValidationError(f"Unknown role '{role}'")
    return Admin if role == ROLE_ADMIN else Partner


def _email_taken(db: Session, model, email: str, exclude_id: Optional[uuid.UUID] = None) -> bool:
    q = db.query(model).filter(model.email == email)
    if exclude_id is not None:
        q = q.filter(model.id != exclude_id)
    return db.query(q.exists()).scalar()


def signup_admin(db: Session, name: str, email: str, password: str) -> Admin:
    if not settings.allow_admin_signup:
        raise AuthorizationDenied("Admin signup is disabled", reason="signup_disabled")
    return create_admin(db, name, email, password)


def create_admin(db: Session, name: str, email: str, password: str) -> Admin:
    """Create an admin account without the signup gate (used by scripts/create_admin.py)."""
    email = normalize_email(email)
    if _email_taken(db, Admin, email):
        raise ConflictError("Admin already exists")
    admin = Admin(name=name.strip(), email=email, password_hash=get_password_hash(password))
    db.add(admin)
    db.commit()
    db.refresh(admin)
    logger.info("admin_created", admin_id=str(admin.id))
    return admin


def verify_credentials(db: Session, role: str, email: str, password: str) -> Principal:
    model = _model_for(role)
    entity = db.query(model).filter(model.email == normalize_email(email)).first()
    if entity is None or not verify_password(password, entity.password_hash):
        logger.info("login_failed", role=role)
        raise AuthenticationFailure("Invalid credentials")
    return principal_for(entity)


def load_account(db: Session, principal: Principal):
    entity = db.get(_model_for(principal.role), principal.id)
    if entity is None:
        raise NotFound(principal.role.capitalize(), principal.id)
    return entity


# Partner accounts (managed by their admin)

def get_partner(db: Session, principal: Principal, partner_id: uuid.UUID) -> Partner:
    partner = db.get(Partner, partner_id)
    if partner is None:
        raise NotFound("Partner", partner_id)
    authorize_or_raise(db, principal, partner)
    return partner


def list_partners(db: Session, admin: Principal):
    return (
        db.query(Partner)
        .filter(Partner.admin_id == admin.id)
        .order_by(Partner.created_at.asc())
        .all()
    )


def create_partner(
    db: Session,
    admin: Principal,
    *,
    name: str,
    email: str,
    password: str,
    person_name: Optional[str] = None,
    person_contact: Optional[str] = None,
) -> Partner:
    email = normalize_email(email)
    if _email_taken(db, Partner, email):
        raise ConflictError("Partner already exists")
    partner = Partner(
        name=name.strip(),
        email=email,
        password_hash=get_password_hash(password),
        person_name=person_name,
        person_contact=person_contact,
        admin_id=admin.id,
    )
    db.add(partner)
    db.commit()
    db.refresh(partner)
    logger.info("partner_created", partner_id=str(partner.id), admin_id=str(admin.id))
    return partner


def update_partner(db: Session, admin: Principal, partner_id: uuid.UUID, data: dict) -> Partner:
    partner = get_partner(db, admin, partner_id)
    if data.get("name"):
        partner.name = data["name"].strip()
    if data.get("email"):
        email = normalize_email(data["email"])
        if _email_taken(db, Partner, email, exclude_id=partner.id):
            raise ConflictError("Partner email already in use")
        partner.email = email
    if "person_name" in data:
        partner.person_name = data["person_name"]
    if "person_contact" in data:
        partner.person_contact = data["person_contact"]
    db.commit()
    db.refresh(partner)
    logger.info("partner_updated", partner_id=str(partner.id))
    return partner


def update_partner_password(db: Session, admin: Principal, partner_id: uuid.UUID, password: str) -> None:
    partner = get_partner(db, admin, partner_id)
    partner.password_hash = get_password_hash(password)
    db.commit()
    logger.info("partner_password_updated", partner_id=str(partner.id))


# Password reset

def request_password_reset(db: Session, mailer: Mailer, role: str, email: str) -> Optional[str]:
    """Issue a reset token and email it. Unknown addresses are silently ignored.

    Returns the plain token (for callers that need it, e.g. tests) or None.
    """
    model = _model_for(role)
    entity = db.query(model).filter(model.email == normalize_email(email)).first()
    if entity is None:
        return None
    token = secrets.token_hex(32)
    db.add(PasswordReset(
        role=role,
        principal_id=entity.id,
        token_hash=_hash_token(token),
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=settings.password_reset_ttl_minutes),
    ))
    db.commit()
    reset_url = f"{settings.frontend_base_url}/reset-password/{role}/{token}"
    body = (
        "<h1>You requested a password reset</h1>"
        "<p>Please click on the following link to reset your password:</p>"
        f'<a href="{html.escape(reset_url)}">{html.escape(reset_url)}</a>'
        f"<p>This link will expire in {settings.password_reset_ttl_minutes} minutes.</p>"
        "<p>If you didn't request this, please ignore this email.</p>"
    )
    try:
        mailer.send(entity.email, "Password Reset Request", body)
    except DeliveryError as e:
        logger.warning("password_reset_email_failed", role=role, error=e.message)
    return token


def reset_password(db: Session, role: str, token: str, new_password: str) -> None:
    model = _model_for(role)
    pr = (
        db.query(PasswordReset)
        .filter(PasswordReset.token_hash == _hash_token(token), PasswordReset.role == role)
        .first()
    )
    if pr is None:
        raise ValidationError("Invalid or expired reset token")
    now_utc = datetime.now(timezone.utc)
    expires_at = pr.expires_at
    if expires_at and expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if pr.used_at is not None or (expires_at and expires_at < now_utc):
        raise ValidationError("Invalid or expired reset token")
    entity = db.get(model, pr.principal_id)
    if entity is None:
        raise ValidationError("Invalid or expired reset token")
    entity.password_hash = get_password_hash(new_password)
    pr.used_at = now_utc
    db.commit()
    logger.info("password_reset_completed", role=role, principal_id=str(entity.id))


def login(db: Session, role: str, email: str, password: str) -> Tuple[Principal, object]:
    principal = verify_credentials(db, role, email, password)
    return principal, load_account(db, principal)
