from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..db import get_db
from ..schemas.auth import (
    AccountResponse,
    AdminSignupRequest,
    ForgotPasswordRequest,
    LoginRequest,
    MeResponse,
    MessageResponse,
    ResetPasswordRequest,
    TokenResponse,
)
from ..services import identity
from ..services.delivery import Mailer, get_mailer
from .security import (
    Principal,
    ROLE_ADMIN,
    ROLE_PARTNER,
    create_access_token,
    get_current_principal,
    principal_for,
)


router = APIRouter(prefix="/api/auth", tags=["auth"])


def _token_response(principal: Principal, account) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(principal),
        role=principal.role,
        account=AccountResponse.model_validate(account),
    )


@router.post("/admin/signup", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def admin_signup(req: AdminSignupRequest, db: Session = Depends(get_db)):
    admin = identity.signup_admin(db, req.name, req.email, req.password)
    return _token_response(principal_for(admin), admin)


@router.post("/admin/login", response_model=TokenResponse)
def admin_login(req: LoginRequest, db: Session = Depends(get_db)):
    principal, account = identity.login(db, ROLE_ADMIN, req.email, req.password)
    return _token_response(principal, account)


@router.post("/partner/login", response_model=TokenResponse)
def partner_login(req: LoginRequest, db: Session = Depends(get_db)):
    principal, account = identity.login(db, ROLE_PARTNER, req.email, req.password)
    return _token_response(principal, account)


@router.get("/me", response_model=MeResponse)
def me(principal: Principal = Depends(get_current_principal)):
    return MeResponse(id=principal.id, role=principal.role, name=principal.name or "", email=principal.email or "")


@router.post("/forgot-password", response_model=MessageResponse)
def forgot_password(
    req: ForgotPasswordRequest,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    # Same answer whether or not the address exists
    identity.request_password_reset(db, mailer, req.role, req.email)
    return MessageResponse(message="If that email exists, a reset link has been sent")


@router.post("/reset-password/{role}/{token}", response_model=MessageResponse)
def reset_password(role: str, token: str, req: ResetPasswordRequest, db: Session = Depends(get_db)):
    identity.reset_password(db, role, token, req.password)
    return MessageResponse(message="Password reset successful")
