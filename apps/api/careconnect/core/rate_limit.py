"""Rate limiting configuration for the connections API."""

import logging
import os

from slowapi import Limiter
from slowapi.util import get_remote_address

from careconnect.core.config import settings

# Redis-backed limiter for multi-worker deployments when REDIS_URL is set;
# in-memory otherwise (dev/test mode)
REDIS_URL = os.getenv("REDIS_URL", "")
IS_TESTING = os.getenv("TESTING", "").lower() in ("1", "true", "yes")
DEFAULT_LIMITS = (
    []
    if IS_TESTING or settings.RATE_LIMIT_API <= 0
    else [f"{settings.RATE_LIMIT_API}/minute"]
)
MESSAGE_LIMIT = (
    "10000/minute"
    if IS_TESTING or settings.RATE_LIMIT_MESSAGES <= 0
    else f"{settings.RATE_LIMIT_MESSAGES}/minute"
)


def _storage_uri() -> str:
    if IS_TESTING or not REDIS_URL:
        return "memory://"
    return REDIS_URL


limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=_storage_uri(),
    default_limits=DEFAULT_LIMITS,
)

if _storage_uri() == "memory://" and settings.ENV != "dev" and not IS_TESTING:
    logging.warning("REDIS_URL not set; rate limits are tracked per process")
