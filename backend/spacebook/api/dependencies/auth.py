# backend/spacebook/api/dependencies/auth.py
"""
Authentication and authorization dependencies.

Access tokens are issued by the account service. This service only verifies
them: ``sub`` is the caller's user id and ``role`` (optional) marks admins.
Internal job endpoints authenticate with a shared cron bearer secret instead.
"""

from dataclasses import dataclass
import hmac
import logging
from typing import Any, Dict, Optional, cast

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
import jwt
from jwt import PyJWTError

from ...core.config import settings

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"

oauth2_scheme_optional = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    role: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode and verify a bearer JWT."""
    payload = jwt.decode(
        token,
        settings.secret_key.get_secret_value(),
        algorithms=[settings.algorithm],
        options={"verify_aud": False},
    )
    return cast(Dict[str, Any], payload)


def get_current_user(token: Optional[str] = Depends(oauth2_scheme_optional)) -> CurrentUser:
    """
    Dependency resolving the authenticated caller from the Authorization header.

    Raises:
        HTTPException: 401 if the token is missing, invalid or expired
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = decode_access_token(token)
    except PyJWTError as exc:
        logger.info("Rejected bearer token: %s", exc)
        raise credentials_exception from exc

    user_id = payload.get("sub")
    if not user_id:
        raise credentials_exception
    role = payload.get("role")
    return CurrentUser(id=str(user_id), role=str(role) if role else None)


def require_admin(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_user


def require_cron_secret(request: Request) -> None:
    """Authenticate scheduler calls with ``Authorization: Bearer <CRON_SECRET>``."""
    secret = settings.cron_secret.get_secret_value()
    if not secret:
        logger.error("CRON_SECRET is not configured; refusing internal job call")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Internal jobs are disabled"
        )
    header = request.headers.get("authorization") or ""
    scheme, _, provided = header.partition(" ")
    if scheme.lower() != "bearer" or not provided:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not hmac.compare_digest(provided.encode("utf-8"), secret.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
