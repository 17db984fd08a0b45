"""
Security utilities for password hashing and JWT token management.

This module provides cryptographic functions for:
- Password hashing using Argon2id (memory-hard, GPU-resistant)
- JWT access token creation and verification

Every access token carries a unique JTI (JWT ID) so it can be tracked and
revoked server-side on logout.
"""

import logging
import secrets
import os
from datetime import timedelta
from typing import Optional, Dict, Any

from jose import JWTError, jwt
from passlib.context import CryptContext

from time_utils import expires_in

logger = logging.getLogger(__name__)


def is_production_like() -> bool:
    """
    Check if the current environment is production-like (production or staging).

    Returns:
        True if ENVIRONMENT is "production" or "staging", False otherwise

    Note:
        This is used for security-sensitive checks like JWT secret validation
        and the initial owner password.
    """
    env = os.environ.get("ENVIRONMENT", "development").lower()
    return env in ("production", "staging")


# Password hashing configuration using Argon2id
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

# JWT configuration
# Load SECRET_KEY from environment variable (REQUIRED for security)
SECRET_KEY = os.environ.get("JWT_SECRET_KEY")
if not SECRET_KEY:
    if is_production_like():
        raise ValueError(
            "JWT_SECRET_KEY environment variable is required in production. "
            "Generate a secure key with: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
        )
    else:
        # Development fallback with warning
        SECRET_KEY = "dev-insecure-key-" + secrets.token_urlsafe(32)
        logger.warning(
            "⚠️  JWT_SECRET_KEY not set! Using temporary development key. "
            "This is INSECURE for production. Set JWT_SECRET_KEY environment variable."
        )

ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")

DEFAULT_ACCESS_TOKEN_EXPIRE_MINUTES = 1440
MAX_ACCESS_TOKEN_EXPIRE_MINUTES = 7 * 24 * 60


def token_lifetime_minutes(raw: Optional[str]) -> int:
    """Parse ACCESS_TOKEN_EXPIRE_MINUTES, falling back to the default when unset, malformed or out of range."""
    if raw is None:
        return DEFAULT_ACCESS_TOKEN_EXPIRE_MINUTES
    try:
        minutes = int(raw)
    except ValueError:
        logger.warning(
            f"⚠️  Invalid ACCESS_TOKEN_EXPIRE_MINUTES={raw!r}. "
            f"Using default of {DEFAULT_ACCESS_TOKEN_EXPIRE_MINUTES} minutes."
        )
        return DEFAULT_ACCESS_TOKEN_EXPIRE_MINUTES

    if not 1 <= minutes <= MAX_ACCESS_TOKEN_EXPIRE_MINUTES:
        logger.warning(
            f"⚠️  ACCESS_TOKEN_EXPIRE_MINUTES={minutes} is outside 1-{MAX_ACCESS_TOKEN_EXPIRE_MINUTES}. "
            f"Using default of {DEFAULT_ACCESS_TOKEN_EXPIRE_MINUTES} minutes."
        )
        return DEFAULT_ACCESS_TOKEN_EXPIRE_MINUTES
    return minutes


ACCESS_TOKEN_EXPIRE_MINUTES = token_lifetime_minutes(os.environ.get("ACCESS_TOKEN_EXPIRE_MINUTES"))

# Validate JWT algorithm
SUPPORTED_ALGORITHMS = ["HS256", "HS384", "HS512"]
if ALGORITHM not in SUPPORTED_ALGORITHMS:
    logger.warning(
        f"⚠️  Unsupported JWT_ALGORITHM={ALGORITHM}. Using HS256. "
        f"Supported: {', '.join(SUPPORTED_ALGORITHMS)}"
    )
    ALGORITHM = "HS256"


def hash_password(password: str) -> str:
    """
    Hash a password using Argon2id.

    Example:
        >>> hashed = hash_password("my_secure_password")
        >>> verify_password("my_secure_password", hashed)
        True
    """
    logger.debug("Hashing password")
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    logger.debug("Verifying password")
    is_valid = pwd_context.verify(plain_password, hashed_password)
    logger.debug(f"Password verification result: {is_valid}")
    return is_valid


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token with a unique JTI for revocation tracking.

    Args:
        data: Payload data to encode in the token (typically sub and role)
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string

    Example:
        >>> token = create_access_token({"sub": "1", "role": "owner"})
    """
    logger.debug(f"Creating access token for subject: {data.get('sub')}")
    to_encode = data.copy()

    expire = expires_in(expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    jti = secrets.token_urlsafe(32)
    to_encode.update({"exp": expire, "type": "access", "jti": jti})

    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    logger.debug(f"Access token created with JTI: {jti}, expires at: {expire}")
    return encoded_jwt


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Verify and decode a JWT token.

    Returns:
        Decoded token payload if valid, None otherwise

    Example:
        >>> payload = verify_token(token)
        >>> if payload:
        ...     user_id = payload.get("sub")
    """
    logger.debug("Verifying JWT token")
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        logger.debug(f"Token verified successfully for user: {payload.get('sub')}")
        return payload
    except JWTError as e:
        logger.info(f"JWT verification failed: {str(e)}")
        return None
