"""
Authentication schemas.
"""

from typing import Optional
from pydantic import BaseModel, field_validator


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class UserInfo(BaseModel):
    id: int
    email: str
    name: Optional[str] = None
    role: str
    luxor_subaccount_name: Optional[str] = None
    group_id: Optional[int] = None


class LoginResponse(BaseModel):
    success: bool = True
    message: str
    user: UserInfo
    tokens: TokenResponse
