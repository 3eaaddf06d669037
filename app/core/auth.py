# app/core/auth.py
import uuid
from typing import Any, Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from sqlmodel import Session

from app.core.config import get_settings
from app.core.errors import AccessDenied
from app.database import get_session
from app.models.user import User
from app.schemas.user import CallerContext

settings = get_settings()

# auto_error=False so a missing header yields our own 401 body
bearer_scheme = HTTPBearer(auto_error=False)


def decode_access_token(token: str) -> dict[str, Any]:
    """
    Decode and verify a Supabase access token (JWT).

    Verification:
      - signature (HS256 using SUPABASE_JWT_SECRET)
      - expiration time (exp)
      - audience is NOT verified (Supabase 'aud' may vary)

    Raises:
        HTTPException(401): if token is invalid/expired.
    """
    try:
        return jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=[settings.SUPABASE_JWT_ALG],
            options={"verify_aud": False},
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    session: Session = Depends(get_session),
) -> User:
    """
    Resolve the directory entry behind a Supabase JWT.

    Flow:
      1. No Authorization header => 401.
      2. Decode JWT => 'sub' must be a UUID.
      3. Look up the user; unknown => 401 (no auto-provisioning, users
         are registered elsewhere).
      4. Only 'active' accounts get through => 403 otherwise.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )

    payload = decode_access_token(credentials.credentials)
    sub = payload.get("sub")
    if not sub:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token missing sub",
        )

    # Supabase provides sub as a string; enforce UUID
    try:
        sub_uuid = uuid.UUID(sub)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid sub in token",
        )

    user = session.get(User, sub_uuid)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not registered",
        )

    if user.status != "active":
        raise AccessDenied(
            "Account is not active",
            code="account_not_active",
            account_status=user.status,
        )
    return user


def get_current_caller(user: User = Depends(get_current_user)) -> CallerContext:
    """
    Identity handed to the services: id, role, status and display name.
    """
    return CallerContext(
        id=user.id,
        role=user.role,
        status=user.status,
        name=user.name,
    )


def require_roles(*roles: str) -> Callable[..., CallerContext]:
    """
    Build a dependency that only lets the given roles through (403 otherwise).

    Usage:

        @router.post("", dependencies=[Depends(require_roles("admin"))])
    """

    def _guard(caller: CallerContext = Depends(get_current_caller)) -> CallerContext:
        if caller.role not in roles:
            raise AccessDenied(
                "Role not allowed for this operation",
                allowed_roles=list(roles),
            )
        return caller

    return _guard
