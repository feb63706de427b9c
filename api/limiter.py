"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (mounted as middleware, exposed on app.state) and by
api/routes/v1/admin_auth.py (per-route @limiter.limit() on login).

A single shared instance keeps one in-memory counter store. Separate
instances per module would each count in isolation and never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
