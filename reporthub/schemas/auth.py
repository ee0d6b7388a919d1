import uuid
from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Literal, Optional


class AdminSignupRequest(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=6)

    @field_validator('email', mode='before')
    @classmethod
    def lower_email(cls, v):
        return str(v).strip().lower() if v is not None else v


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class AccountResponse(BaseModel):
    id: uuid.UUID
    name: str
    email: str

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str
    account: AccountResponse


class MeResponse(BaseModel):
    id: uuid.UUID
    role: str
    name: str
    email: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr
    role: Literal["admin", "partner"] = "admin"


class ResetPasswordRequest(BaseModel):
    password: str = Field(min_length=6)


class MessageResponse(BaseModel):
    message: str
    detail: Optional[dict] = None
