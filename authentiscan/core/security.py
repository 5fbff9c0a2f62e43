"""
security.py — Identity-provider token verification.

Identity is delegated to an external provider: it signs a JWT whose `sub`
claim is the caller's external identity id. We verify the signature with
python-jose and trust the id verbatim; user records are never looked up
here.

Usage in a route:
    async def my_route(user_id: CurrentUserId):
        ...
"""

from typing import Annotated, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from authentiscan.core.config import settings
from authentiscan.core.errors import Unauthorized

# Reusable bearer extractor (does NOT auto-raise on missing token)
_bearer = HTTPBearer(auto_error=False)
CredDep = Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer)]


def decode_identity_token(token: str) -> Optional[str]:
    """
    Decode and validate an identity-provider JWT.

    Returns the *sub* claim on success, or None if the token is expired,
    badly signed, or has no subject.
    """
    options = {"verify_aud": settings.identity_jwt_audience is not None}
    try:
        payload = jwt.decode(
            token,
            settings.identity_jwt_secret,
            algorithms=[settings.identity_jwt_algorithm],
            audience=settings.identity_jwt_audience,
            options=options,
        )
    except JWTError:
        return None
    sub = payload.get("sub")
    return str(sub) if sub else None


async def _get_current_user_id(credentials: CredDep) -> str:
    """FastAPI dependency — resolve the caller's external identity id or raise 401."""
    if not credentials:
        raise Unauthorized()
    user_id = decode_identity_token(credentials.credentials)
    if not user_id:
        raise Unauthorized("Invalid or expired token")
    return user_id


CurrentUserId = Annotated[str, Depends(_get_current_user_id)]
