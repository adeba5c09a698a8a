# middleware/rate_limit.py
"""
Rate limiting configuration using slowapi.

Usage in route files:
    from middleware.rate_limit import limiter

    @router.post("/refresh")
    @limiter.limit(REFRESH_RATE_LIMIT)
    async def trigger_refresh(request: Request):
        ...
"""
import logging
import os

from slowapi import Limiter
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)

# The service is single-user, so the client address is the only useful bucket.
DEFAULT_RATE_LIMIT = os.getenv("RATE_LIMIT_DEFAULT", "120/minute")

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[DEFAULT_RATE_LIMIT],
    storage_uri=os.getenv("RATE_LIMIT_STORAGE_URI", "memory://"),
    strategy="fixed-window",
)
