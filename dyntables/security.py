"""
Admin token authentication.

Every route except the health check requires `Authorization: Bearer <ADMIN_TOKEN>`.
With no ADMIN_TOKEN configured the check is disabled (local development).
"""

import hashlib
import hmac
import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from dyntables import config

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def verify_token(token: Optional[str], expected: Optional[str]) -> bool:
    if not token or not expected:
        return False
    return hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))


def token_fingerprint(token: str) -> str:
    """Short stable id for a token, safe to log or use as a rate-limit key."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:12]


def get_client_identifier(request: Request) -> str:
    """Rate-limit key: token fingerprint for a verified admin token, client IP otherwise."""
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header[7:]
        if verify_token(token, config.ADMIN_TOKEN):
            return f"token:{token_fingerprint(token)}"

    client_ip = request.client.host if request.client else "unknown_ip"
    return f"ip:{client_ip}"


async def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """
    FastAPI dependency guarding admin routes.

    Returns:
        "admin" when the token matches, "anonymous" when auth is disabled

    Raises:
        HTTPException: 401 if the token is missing or wrong
    """
    expected = config.ADMIN_TOKEN
    if not expected:
        return "anonymous"

    token = credentials.credentials if credentials else None
    if not verify_token(token, expected):
        logger.warning("Rejected request with missing or invalid admin token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return "admin"
