"""Authentication utilities.

Sessions are issued by the external auth provider as signed bearer tokens of
the form ``<user_id>.<role>.<signature>``, where the signature is the
HMAC-SHA256 of ``<user_id>.<role>`` keyed with ``AUTH_SECRET``.
"""
import hashlib
import hmac
from typing import Optional
from fastapi import Depends, Header, HTTPException
from pydantic import BaseModel
import logging

from storefront import config
from storefront.models import UserRole
from storefront.monitoring import auth_failures_counter

logger = logging.getLogger(__name__)


class SessionUser(BaseModel):
    """Authenticated requester."""
    user_id: str
    role: UserRole = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def _signature(payload: str) -> str:
    secret = (config.AUTH_SECRET or "").encode()
    return hmac.new(secret, payload.encode(), hashlib.sha256).hexdigest()


def sign_session_token(user_id: str, role: UserRole = UserRole.USER) -> str:
    """
    Build a session token for a user.

    Args:
        user_id: User identifier
        role: User role

    Returns:
        Signed session token
    """
    payload = f"{user_id}.{UserRole(role).value}"
    return f"{payload}.{_signature(payload)}"


def decode_session_token(token: str) -> Optional[SessionUser]:
    """
    Verify a session token.

    Returns:
        The session user, or None if the token is malformed or forged
    """
    parts = token.rsplit(".", 2)
    if len(parts) != 3:
        return None

    user_id, role, signature = parts
    if not user_id or not hmac.compare_digest(signature, _signature(f"{user_id}.{role}")):
        return None

    try:
        return SessionUser(user_id=user_id, role=UserRole(role))
    except ValueError:
        return None


def get_optional_session(authorization: Optional[str] = Header(None)) -> Optional[SessionUser]:
    """
    Resolve the requester's session, allowing guests.

    Args:
        authorization: Authorization header value

    Returns:
        Session user, or None for guests

    Raises:
        HTTPException: If a token is supplied but invalid
    """
    if authorization is None:
        return None

    # Extract token (Bearer <token>)
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        auth_failures_counter.add(1, {"reason": "invalid_format"})
        logger.warning("Authentication failed: Invalid authorization header format", extra={
            "auth_header": authorization[:20] + "..." if len(authorization) > 20 else authorization
        })
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    session = decode_session_token(parts[1])
    if session is None:
        auth_failures_counter.add(1, {"reason": "invalid_token"})
        logger.warning("Authentication failed: Invalid token", extra={
            "token_prefix": parts[1][:8] + "..." if len(parts[1]) > 8 else parts[1]
        })
        raise HTTPException(status_code=401, detail="Invalid token")

    logger.debug("Authentication successful", extra={"user_id": session.user_id})
    return session


def verify_session(session: Optional[SessionUser] = Depends(get_optional_session)) -> SessionUser:
    """Require an authenticated session."""
    if session is None:
        auth_failures_counter.add(1, {"reason": "missing_header"})
        logger.warning("Authentication failed: Missing authorization header")
        raise HTTPException(status_code=401, detail="Unauthorized")
    return session


def require_admin(session: SessionUser = Depends(verify_session)) -> SessionUser:
    """Require an authenticated session with the admin role."""
    if not session.is_admin:
        auth_failures_counter.add(1, {"reason": "forbidden"})
        logger.warning("Authorization failed: Admin role required", extra={
            "user_id": session.user_id
        })
        raise HTTPException(status_code=403, detail="Forbidden")
    return session
