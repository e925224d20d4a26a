"""
Bearer-token verification.

Tokens are issued by the external auth service (HS256, `sub` = user id).
The same verifier guards HTTP routes and websocket handshakes.
"""
import logging
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from chirp.config import settings
from chirp.errors import UnauthorizedError

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def decode_access_token(token: str) -> str:
    """Return the user id carried by a valid access token."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_access_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise UnauthorizedError("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise UnauthorizedError("Invalid token") from exc

    subject = payload.get("sub")
    if not subject:
        raise UnauthorizedError("Token missing subject")
    return str(subject)


def token_from_header(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    if credentials is None:
        raise UnauthorizedError("Missing credentials")
    return decode_access_token(credentials.credentials)


async def get_optional_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    """Resolve the caller when a token is present; anonymous otherwise."""
    if credentials is None:
        return None
    try:
        return decode_access_token(credentials.credentials)
    except UnauthorizedError:
        logger.debug("Ignoring invalid token on optional-auth route")
        return None
