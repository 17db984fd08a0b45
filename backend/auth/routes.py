"""
Authentication API endpoints.

This module provides REST API endpoints for:
- User registration
- Login/logout with revocable bearer tokens
- Current user lookup
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from database import get_db
from models import AccessToken, User, UserRole
import schemas
from auth.security import (
    hash_password,
    verify_password,
    create_access_token,
    verify_token,
)
from auth.dependencies import get_current_token, get_current_user
from time_utils import from_timestamp

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["auth"])


# Request/Response schemas
class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: schemas.BoundedEmail
    password: str = Field(..., min_length=8, max_length=100)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: schemas.User
    message: str


def issue_access_token(user: User, db: Session) -> str:
    """
    Create an access token for a user and track its JTI for revocation.

    The token row is added to the session; the caller commits.

    Returns:
        Encoded JWT access token
    """
    token_data = {"sub": str(user.id), "role": user.role.value, "email": user.email}
    access_token = create_access_token(token_data)

    payload = verify_token(access_token)
    db.add(AccessToken(
        user_id=user.id,
        token_jti=payload["jti"],
        expires_at=from_timestamp(payload["exp"]),
        is_revoked=False,
    ))

    logger.debug(f"Issued access token {payload['jti']} for user {user.id}")
    return access_token


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(request: RegisterRequest, db: Session = Depends(get_db)):
    """
    Register a new member account and issue its first access token.

    Raises:
        HTTPException: 422 if email already registered
    """
    logger.info(f"Registration attempt for email: {request.email}")

    existing_user = db.query(User).filter(User.email == request.email).first()
    if existing_user:
        logger.info(f"Registration failed: email already exists: {request.email}")
        raise HTTPException(
            status_code=422,
            detail="The email has already been taken.",
        )

    new_user = User(
        name=request.name,
        email=request.email,
        password_hash=hash_password(request.password),
        role=UserRole.member,
    )
    db.add(new_user)
    db.flush()

    access_token = issue_access_token(new_user, db)
    db.commit()
    db.refresh(new_user)

    logger.info(f"User registered successfully: {new_user.email} (ID: {new_user.id})")
    return {
        "access_token": access_token,
        "token_type": "bearer",
        "user": new_user,
        "message": "User registered successfully",
    }


@router.post("/login", response_model=TokenResponse)
async def login(request: LoginRequest, db: Session = Depends(get_db)):
    """
    Login with email and password.

    Raises:
        HTTPException: 401 if credentials invalid
    """
    logger.info(f"Login attempt for email: {request.email}")

    user = db.query(User).filter(User.email == request.email).first()
    if not user or not verify_password(request.password, user.password_hash):
        logger.info(f"Login failed for email: {request.email}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    access_token = issue_access_token(user, db)
    db.commit()

    logger.info(f"User logged in successfully: {user.email} (ID: {user.id})")
    return {
        "access_token": access_token,
        "token_type": "bearer",
        "user": user,
        "message": "Login successful",
    }


@router.post("/logout")
async def logout(
    token: AccessToken = Depends(get_current_token),
    db: Session = Depends(get_db),
):
    """
    Revoke the bearer token presented with this request.

    Other tokens issued to the same user stay valid.
    """
    token.is_revoked = True
    db.commit()

    logger.info(f"Revoked access token {token.token_jti} for user {token.user_id}")
    return {"message": "Logged out successfully"}


@router.get("/me")
async def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Get current authenticated user information."""
    logger.debug(f"Fetching user info for: {current_user.email}")
    return {
        "user": schemas.User.model_validate(current_user),
        "message": "User retrieved successfully",
    }
