"""
rate_limit.py — Global rate limiter instance.

Uses slowapi (a Starlette-compatible wrapper around the `limits` library).
Authenticated requests are keyed by the caller's external identity id so a
user cannot dodge the limit by rotating IPs; anonymous requests fall back
to the client IP.

Usage in routes:
    @router.post("/some-endpoint")
    @limiter.limit("20/minute")
    async def my_endpoint(request: Request, ...):
        ...
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from authentiscan.core.security import decode_identity_token


def user_or_ip_key(request: Request) -> str:
    auth = request.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        user_id = decode_identity_token(auth[7:].strip())
        if user_id:
            return f"user:{user_id}"
    return get_remote_address(request)


limiter = Limiter(key_func=user_or_ip_key)
