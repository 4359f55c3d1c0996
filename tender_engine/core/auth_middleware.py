"""Authentication dependencies for FastAPI."""

import hmac
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tender_engine.core.config import get_settings
from tender_engine.core.logging import get_logger

logger = get_logger(__name__)

# HTTP Bearer scheme for Authorization header
security = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    """Authenticated caller."""

    user_id: str
    email: str
    token: str


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[AuthContext]:
    """
    Validate a Supabase access token from the Authorization header.

    Returns None if no valid auth is present.
    """
    if not credentials:
        return None

    token = credentials.credentials

    try:
        from tender_engine.db.supabase_client import get_supabase

        auth_response = get_supabase().auth.get_user(token)
    except Exception as e:
        logger.warning(f"Token verification failed: {e}")
        return None

    if not auth_response or not auth_response.user or not auth_response.user.email:
        return None

    return AuthContext(
        user_id=str(auth_response.user.id),
        email=auth_response.user.email,
        token=token,
    )


async def require_auth(
    auth: Optional[AuthContext] = Depends(get_current_user),
) -> AuthContext:
    """
    Require an authenticated caller.

    Raises:
        HTTPException: 401 if not authenticated
    """
    if not auth:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return auth


def _matches(candidate: str, secret: str | None) -> bool:
    return bool(secret) and hmac.compare_digest(candidate.encode(), secret.encode())


def is_worker_request(request: Request) -> bool:
    """
    Whether a request may trigger batch work.

    Accepted: ``Authorization: Bearer <WORKER_AUTH_TOKEN>``, the cron secret
    (raw or as a bearer token, in ``Authorization`` or ``x-vercel-cron-secret``),
    or any request when ``WORKER_AUTH_DISABLED`` is set.
    """
    settings = get_settings()
    authorization = request.headers.get("authorization", "")

    if settings.WORKER_AUTH_TOKEN and _matches(authorization, f"Bearer {settings.WORKER_AUTH_TOKEN}"):
        return True

    cron_header = request.headers.get("x-vercel-cron-secret") or authorization
    if settings.CRON_SECRET and (
        _matches(cron_header, settings.CRON_SECRET)
        or _matches(cron_header, f"Bearer {settings.CRON_SECRET}")
    ):
        return True

    return settings.WORKER_AUTH_DISABLED


async def require_worker(request: Request) -> None:
    """
    Require batch trigger credentials.

    Raises:
        HTTPException: 401 if the request carries no valid worker credentials
    """
    if not is_worker_request(request):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
