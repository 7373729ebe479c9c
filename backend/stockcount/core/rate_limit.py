"""Shared rate limiter for the counting routes.

Counting devices often sit behind one restaurant NAT, so authenticated
requests are bucketed per tenant and user rather than per IP.
"""

from typing import Optional

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from stockcount.core.config import settings
from stockcount.core.security import decode_access_token

TOKEN_COOKIE = "access_token"


def _bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        return auth.split(" ", 1)[1]
    return request.cookies.get(TOKEN_COOKIE)


def rate_limit_key(request: Request) -> str:
    """``tenant:<id>:user:<sub>`` for a valid token, else the client IP."""
    token = _bearer_token(request)
    payload = decode_access_token(token) if token else None
    if payload and payload.get("sub"):
        return f"tenant:{payload.get('tenant_id')}:user:{payload['sub']}"
    return get_remote_address(request)


limiter = Limiter(key_func=rate_limit_key, enabled=settings.rate_limit_enabled)
