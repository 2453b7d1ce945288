"""
Authentication service.
Handles login and token management.
"""

from typing import Optional
from sqlalchemy import func
from sqlalchemy.orm import Session

from database.models import User
from core.security import (
    verify_password,
    create_access_token,
    create_refresh_token,
    verify_refresh_token,
    TokenData,
)
from core.config import settings
from schemas.auth import TokenResponse, UserInfo


class AuthService:
    """Authentication service class."""

    def __init__(self, db: Session):
        self.db = db

    def authenticate_user(self, email: str, password: str) -> Optional[User]:
        """
        Authenticate user with email and password.

        Args:
            email: Login email (case-insensitive)
            password: Plain text password
        """
        user = self.db.query(User).filter(
            func.lower(User.email) == email.lower().strip(),
            User.is_deleted == False
        ).first()

        if not user:
            return None

        if not verify_password(password, user.password_hash):
            return None

        return user

    def create_tokens(self, user: User) -> TokenResponse:
        """Create access and refresh tokens for user."""
        token_data = TokenData(
            user_id=user.id,
            email=user.email,
            role=user.role.value
        )

        return TokenResponse(
            access_token=create_access_token(token_data.to_dict()),
            refresh_token=create_refresh_token(token_data.to_dict()),
            token_type="bearer",
            expires_in=settings.access_token_expire_minutes * 60
        )

    def refresh_tokens(self, refresh_token: str) -> Optional[TokenResponse]:
        """Refresh access token using refresh token."""
        payload = verify_refresh_token(refresh_token)
        if not payload:
            return None

        user_id = payload.get("sub")
        if not user_id:
            return None

        user = self.db.query(User).filter(
            User.id == int(user_id),
            User.is_active == True,
            User.is_deleted == False
        ).first()

        if not user:
            return None

        return self.create_tokens(user)

    def get_user_info(self, user: User) -> UserInfo:
        """Get user info for response."""
        return UserInfo(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role.value,
            luxor_subaccount_name=user.luxor_subaccount_name,
            group_id=user.group_id,
        )
