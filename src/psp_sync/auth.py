"""API key checks and per-caller rate limiting for the sync API."""

import hashlib
import os
import secrets
import logging
from typing import List

from fastapi import HTTPException, Request, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from slowapi import Limiter
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)

security = HTTPBearer()

# Sync runs hit the upstream PSP, so they are rate limited per caller
SYNC_RUN_RATE_LIMIT = os.getenv("SYNC_RUN_RATE_LIMIT", "30/minute")


def key_fingerprint(api_key: str) -> str:
    """Short, non-reversible label for an API key, safe to log."""
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:12]


def configured_api_keys() -> List[str]:
    """Accepted keys: API_KEY plus a comma-separated API_KEYS for rotation."""
    keys = [os.getenv("API_KEY", "")]
    keys.extend(os.getenv("API_KEYS", "").split(","))
    return [key.strip() for key in keys if key.strip()]


def rate_limit_key(request: Request) -> str:
    """Bucket requests by bearer key, falling back to the client address."""
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token:
        return f"key:{key_fingerprint(token)}"
    return get_remote_address(request)


limiter = Limiter(key_func=rate_limit_key)


async def verify_api_key(credentials: HTTPAuthorizationCredentials = Security(security)) -> str:
    """Check the bearer key against every configured key.

    Raises:
        HTTPException: 500 if no key is configured, 401 if the key is wrong.
    """
    accepted = configured_api_keys()
    if not accepted:
        logger.error("Neither API_KEY nor API_KEYS is configured")
        raise HTTPException(status_code=500, detail="Server configuration error")
    presented = credentials.credentials
    # every configured key is compared, even after a match
    matches = [secrets.compare_digest(presented, key) for key in accepted]
    if not any(matches):
        logger.warning(f"Rejected API key {key_fingerprint(presented)}")
        raise HTTPException(status_code=401, detail="Invalid API key")
    return presented
