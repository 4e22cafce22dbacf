"""Authentication utilities.

Authentication itself is an external concern: a bearer token is exchanged
for an opaque user identity (the user's email) that is passed explicitly
into every cart and order operation.
"""
from typing import Optional
from fastapi import Depends, Header, HTTPException
import logging

from config import USER_TOKENS, ADMIN_TOKENS
from monitoring import auth_failures_counter

logger = logging.getLogger(__name__)


def verify_token(authorization: Optional[str] = Header(None)) -> str:
    """
    Verify authentication token.

    Args:
        authorization: Authorization header value

    Returns:
        Valid token

    Raises:
        HTTPException: If token is invalid or missing
    """
    if authorization is None:
        auth_failures_counter.add(1, {"reason": "missing_header"})
        logger.warning("Authentication failed: Missing authorization header")
        raise HTTPException(status_code=401, detail="Missing authorization header")

    # Extract token (Bearer <token>)
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        auth_failures_counter.add(1, {"reason": "invalid_format"})
        logger.warning("Authentication failed: Invalid authorization header format", extra={
            "auth_header": authorization[:20] + "..." if len(authorization) > 20 else authorization
        })
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    token = parts[1]
    if token not in USER_TOKENS and token not in ADMIN_TOKENS:
        auth_failures_counter.add(1, {"reason": "invalid_token"})
        logger.warning("Authentication failed: Invalid token", extra={
            "token_prefix": token[:8] + "..." if len(token) > 8 else token
        })
        raise HTTPException(status_code=401, detail="Invalid token")

    return token


def get_current_user_email(token: str = Depends(verify_token)) -> str:
    """
    Resolve the user identity behind a token.

    Raises:
        HTTPException: If the token does not belong to a shopper
    """
    email = USER_TOKENS.get(token)
    if email is None:
        auth_failures_counter.add(1, {"reason": "not_a_user_token"})
        raise HTTPException(status_code=403, detail="Token is not bound to a user")
    return email


def require_admin(token: str = Depends(verify_token)) -> str:
    """
    Allow only admin tokens.

    Raises:
        HTTPException: If the token is not an admin token
    """
    if token not in ADMIN_TOKENS:
        auth_failures_counter.add(1, {"reason": "not_admin"})
        logger.warning("Admin access denied", extra={
            "token_prefix": token[:8] + "..." if len(token) > 8 else token
        })
        raise HTTPException(status_code=403, detail="Admin access required")
    return token
