"""API key verification and sync trigger rate limits.

Sync runs hit the provider once per region, so triggers are budgeted per
caller: requests are keyed by a digest of the bearer key, falling back to
the client address when no key is sent.
"""

import os
import hashlib
import secrets
import logging

from fastapi import HTTPException, Request, Security
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)

DEFAULT_SYNC_RATE_LIMIT = "10/minute"

security = HTTPBearer()


def caller_key(request: Request) -> str:
    """Rate limit bucket for a request.

    The raw API key never reaches the limiter storage, only a short digest.
    """
    authorization = request.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        digest = hashlib.sha256(credentials.strip().encode()).hexdigest()[:16]
        return f"key:{digest}"
    return f"addr:{get_remote_address(request)}"


def sync_rate_limit() -> str:
    """Limit applied to sync triggers, read from SYNC_RATE_LIMIT on each request."""
    return os.getenv("SYNC_RATE_LIMIT", DEFAULT_SYNC_RATE_LIMIT)


limiter = Limiter(key_func=caller_key)


async def verify_api_key(credentials: HTTPAuthorizationCredentials = Security(security)) -> str:
    """Verify the API key from the Authorization header.

    Args:
        credentials: HTTP Bearer credentials from the request.

    Returns:
        The verified API key.

    Raises:
        HTTPException: 500 if API_KEY is not configured, 401 if the key
            does not match.
    """
    expected_key = os.getenv("API_KEY")
    if not expected_key:
        logger.error("API_KEY environment variable is not configured")
        raise HTTPException(status_code=500, detail="Server configuration error")
    if not secrets.compare_digest(credentials.credentials.encode(), expected_key.encode()):
        logger.warning("Rejected sync API request with an invalid API key")
        raise HTTPException(status_code=401, detail="Invalid API key")
    return credentials.credentials


async def sync_rate_limit_exceeded(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Answer 429 when a caller triggers syncs faster than its budget allows."""
    logger.warning(
        f"Sync trigger rate limit exceeded on {request.url.path} "
        f"for {caller_key(request)}: {exc.detail}"
    )
    return JSONResponse(
        status_code=429,
        content={"detail": f"Too many sync requests: limit is {exc.detail}"},
    )
