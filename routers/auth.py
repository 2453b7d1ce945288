"""
Authentication router.
Handles login, token refresh and the current user's profile.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from database import get_db
from database.models import User
from core.dependencies import get_current_active_user
from schemas.auth import (
    LoginRequest,
    LoginResponse,
    TokenResponse,
    RefreshTokenRequest,
    UserInfo,
)
from services.auth import AuthService


router = APIRouter()


@router.post("/login", response_model=LoginResponse)
async def login(
    data: LoginRequest,
    db: Session = Depends(get_db)
):
    """Login with email and password."""
    auth_service = AuthService(db)

    user = auth_service.authenticate_user(data.email, data.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password"
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User is inactive"
        )

    return LoginResponse(
        success=True,
        message="Logged in",
        user=auth_service.get_user_info(user),
        tokens=auth_service.create_tokens(user)
    )


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    data: RefreshTokenRequest,
    db: Session = Depends(get_db)
):
    """Exchange a refresh token for a new token pair."""
    tokens = AuthService(db).refresh_tokens(data.refresh_token)
    if not tokens:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token"
        )
    return tokens


@router.get("/me", response_model=UserInfo)
async def get_me(
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db)
):
    """Current user's profile."""
    return AuthService(db).get_user_info(current_user)
