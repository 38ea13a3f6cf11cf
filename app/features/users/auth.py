"""
Authentication utilities for bearer JWT verification.

Tokens are issued by the authentication service and signed with the shared
``JWT_SECRET``; the ``JWT_USER_CLAIM`` claim carries the local user id.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional
import jwt
from fastapi import HTTPException, status

from app.core import config


def verify_jwt_token(token: str) -> dict:
    """
    Verify a JWT and return its payload.

    Args:
        token: JWT token from Authorization header

    Returns:
        Decoded JWT payload

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        return jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
            options={"verify_exp": True},
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )


def create_access_token(user_id: int, expires_in: Optional[timedelta] = timedelta(hours=1)) -> str:
    """Sign a token for ``user_id`` (local tooling and tests)."""
    payload = {config.JWT_USER_CLAIM: str(user_id)}
    if expires_in is not None:
        payload["exp"] = datetime.now(timezone.utc) + expires_in
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)
