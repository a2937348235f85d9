"""Bearer identity for protected routes.

Tokens are issued elsewhere; this service only verifies them and reads the
user id from ``sub``.
"""

import jwt
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer

from lyrics_vault.auth.jwt import decode_access_token
from lyrics_vault.errors import AuthenticationError

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token", auto_error=False)


async def get_current_user_id(
    token: str | None = Depends(oauth2_scheme),  # noqa: B008
) -> str:
    if not token:
        raise AuthenticationError()
    try:
        claims = decode_access_token(token)
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("token has expired") from None
    except jwt.InvalidTokenError:
        raise AuthenticationError("invalid token") from None

    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject:
        raise AuthenticationError("token has no subject")
    return subject
