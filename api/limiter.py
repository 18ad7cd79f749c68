"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in the route modules
(to apply per-route limits with @limiter.limit()). Limit strings come from
Settings (LOGIN_RATE_LIMIT, TWO_FACTOR_RATE_LIMIT, REFRESH_RATE_LIMIT).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

The auth core knows nothing about rate limiting; this is the only gate in
front of password and code guessing. Tests set limiter.enabled = False.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
