import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
import bcrypt as _bcrypt
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..errors import AuthenticationFailure, AuthorizationDenied
from ..models.models import Admin, Partner


ROLE_ADMIN = "admin"
ROLE_PARTNER = "partner"
ROLES = (ROLE_ADMIN, ROLE_PARTNER)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
http_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    id: uuid.UUID
    role: str
    name: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_partner(self) -> bool:
        return self.role == ROLE_PARTNER


def principal_for(entity) -> Principal:
    role = ROLE_ADMIN if isinstance(entity, Admin) else ROLE_PARTNER
    return Principal(id=entity.id, role=role, name=entity.name, email=entity.email)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    # Accounts migrated from the previous backend carry bcrypt hashes ($2a$/$2b$/$2y$)
    if hashed.startswith("$2a$") or hashed.startswith("$2b$") or hashed.startswith("$2y$"):
        pb = plain.encode("utf-8")
        if len(pb) > 72:
            pb = pb[:72]
        try:
            return _bcrypt.checkpw(pb, hashed.encode("utf-8"))
        except ValueError:
            return False
    try:
        return pwd_context.verify(plain, hashed)
    except (ValueError, TypeError):
        return False


def create_access_token(principal: Principal, ttl_seconds: Optional[int] = None) -> str:
    ttl = settings.jwt_ttl_seconds if ttl_seconds is None else ttl_seconds
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": str(principal.id),
        "role": principal.role,
        "iat": int(now.timestamp()),
        "jti": str(uuid.uuid4()),
    }
    if ttl:
        payload["exp"] = int((now + timedelta(seconds=ttl)).timestamp())
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthenticationFailure("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationFailure("Not authorized to access this route")


def parse_token(token: str, db: Session) -> Principal:
    """Resolve a bearer token to a live principal, re-reading the account row."""
    payload = decode_token(token)
    role = payload.get("role")
    if role not in ROLES:
        raise AuthenticationFailure("Invalid token role")
    try:
        principal_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise AuthenticationFailure("Invalid subject")
    model = Admin if role == ROLE_ADMIN else Partner
    entity = db.get(model, principal_id)
    if entity is None:
        raise AuthenticationFailure("Admin not found" if role == ROLE_ADMIN else "Partner not found")
    return principal_for(entity)


def get_current_principal(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
) -> Principal:
    if creds is None:
        raise AuthenticationFailure("Not authorized to access this route")
    return parse_token(creds.credentials, db)


def require_role(*roles: str):
    """Gate a route to principals holding one of ``roles``."""
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            raise AuthorizationDenied(f"This route is restricted to {' or '.join(roles)} users", reason="role")
        return principal

    return _dep


require_admin = require_role(ROLE_ADMIN)
require_partner = require_role(ROLE_PARTNER)
require_any = require_role(ROLE_ADMIN, ROLE_PARTNER)
