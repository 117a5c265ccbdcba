"""Rate limiting configuration using slowapi.

The Limiter lives here so routers can decorate individual endpoints and
main.py can wire it into the app.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Ledger-mutating endpoints tighten this with @limiter.limit("N/period").
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["120/minute"],
)
