"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and the routers
(to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

Counting is a per-process moving window keyed on client IP. Limits are
callables so they are read from Settings at request time:
  default_limits -- RATE_LIMIT, every route without its own decorator
  auth_limit     -- AUTH_RATE_LIMIT, applied to POST /auth/login
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings


def default_limit() -> str:
    return get_settings().rate_limit


def auth_limit() -> str:
    return get_settings().auth_rate_limit


limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    strategy="moving-window",
    default_limits=[default_limit],
)
