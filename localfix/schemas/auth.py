from typing import Any, Literal

from pydantic import BaseModel, Field


class SignupRequest(BaseModel):
    email: str = Field(min_length=3)
    password: str = Field(min_length=1)
    full_name: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    role: Literal["client", "worker"]


class SignupOut(BaseModel):
    message: str
    user: dict[str, Any] | None = None


class VerifyPhoneRequest(BaseModel):
    phone: str | None = None
    token: str | None = None


class SuccessOut(BaseModel):
    success: bool
