"""
FastAPI dependencies for authentication and authorization.

This module provides dependency functions that can be used in route handlers to:
- Resolve the bearer token presented with a request to its tracked record
- Extract the current user behind that token
- Enforce role-based access control (RBAC)
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from database import get_db
from models import AccessToken, User, UserRole
from auth.security import verify_token
from time_utils import utc_now, is_expired

logger = logging.getLogger(__name__)

# HTTP Bearer token scheme for JWT authentication
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> AccessToken:
    """
    Validate the bearer token and return its tracked database record.

    A token is accepted only if its signature and expiry are valid, it is an
    access token, and its JTI is known and has not been revoked.

    Raises:
        HTTPException: 401 if authentication fails
    """
    if not credentials or not credentials.credentials:
        logger.info("No authentication credentials provided")
        raise _unauthorized("Not authenticated")

    payload = verify_token(credentials.credentials)
    if payload is None:
        logger.info("JWT token verification failed")
        raise _unauthorized("Invalid or expired token")

    if payload.get("type") != "access":
        logger.info(f"Invalid token type: {payload.get('type')}")
        raise _unauthorized("Invalid token type")

    # Parse user_id safely (malformed tokens should return 401, not 500)
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        logger.info(f"Invalid user_id format in token: {payload.get('sub')}")
        raise _unauthorized("Invalid token format")

    token_jti = payload.get("jti")
    token = None
    if token_jti:
        token = db.query(AccessToken).filter(AccessToken.token_jti == token_jti).first()

    # Reject tokens not tracked in database (prevents revocation bypass)
    if token is None or token.user_id != user_id:
        logger.info(f"Token not tracked for user {user_id} (JTI: {token_jti})")
        raise _unauthorized("Invalid or expired token")

    if token.is_revoked:
        logger.info(f"Revoked token presented (JTI: {token_jti})")
        raise _unauthorized("Token has been revoked")

    if is_expired(token.expires_at):
        logger.info(f"Expired token presented (JTI: {token_jti})")
        raise _unauthorized("Invalid or expired token")

    token.last_used_at = utc_now()
    db.commit()

    return token


async def get_current_user(token: AccessToken = Depends(get_current_token)) -> User:
    """
    Return the user behind the presented bearer token.

    Example:
        @app.get("/api/protected")
        async def protected_route(user: User = Depends(get_current_user)):
            return {"user_id": user.id}
    """
    user = token.user
    if user is None:
        logger.info(f"User not found for token {token.id}")
        raise _unauthorized("User not found")

    logger.debug(f"User authenticated via JWT: {user.email}")
    return user


def require_role(required_role: UserRole, detail: Optional[str] = None):
    """
    Create a dependency that requires a specific user role.

    Args:
        required_role: Role required to access the endpoint
        detail: Optional error message for the 403 response

    Example:
        @app.delete("/api/users/{id}")
        async def delete_user(
            user_id: int,
            current_user: User = Depends(require_role(UserRole.owner))
        ):
            pass
    """
    logger.debug(f"Creating role requirement dependency for role: {required_role.value}")

    # Role hierarchy: owner > member
    role_hierarchy = {UserRole.member: 0, UserRole.owner: 1}

    async def role_checker(current_user: User = Depends(get_current_user)) -> User:
        """Check if the current user has the required role."""
        current_level = role_hierarchy.get(current_user.role, 0)
        required_level = role_hierarchy[required_role]

        if current_level < required_level:
            logger.info(
                f"Access denied: user {current_user.email} has role '{current_user.role.value}', "
                f"but '{required_role.value}' is required"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=detail or f"Access denied. Required role: {required_role.value}",
            )

        logger.debug(f"Role check passed for user: {current_user.email}")
        return current_user

    return role_checker


async def get_current_owner(
    current_user: User = Depends(require_role(UserRole.owner, "You are not authorized to manage users."))
) -> User:
    """
    Convenience dependency for owner-only endpoints.

    Example:
        @app.get("/api/users")
        async def list_users(owner: User = Depends(get_current_owner)):
            pass
    """
    return current_user
