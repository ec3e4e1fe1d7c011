"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and the v1 routers
(to apply per-route limits with @limiter.limit(LOGIN_LIMIT)).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

This is the coarse per-IP throttle in front of the login and signup routes.
The per-identity lockout with retry-after lives in auth/ratelimit.py and is
backed by the database, so it holds across workers and restarts.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

LOGIN_LIMIT = get_settings().login_rate_limit

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
