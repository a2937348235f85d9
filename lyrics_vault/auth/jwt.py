"""JWT utilities: bearer identity tokens and storage write grants.

Identity tokens carry the user id in ``sub``. Storage write grants are
short-lived tokens scoped to a single object key and content type; holding
one is the only way to write bytes into the object store.
"""

from datetime import UTC, datetime, timedelta

import jwt

from lyrics_vault.settings import settings

STORAGE_WRITE_SCOPE = "storage:write"


def create_access_token(subject: str, expires_delta: timedelta | None = None) -> str:
    expire = datetime.now(UTC) + (
        expires_delta or timedelta(minutes=settings.jwt_access_token_expire_minutes)
    )
    payload = {"sub": subject, "exp": expire}
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, object]:
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])


def create_storage_grant(
    key: str,
    content_type: str,
    ttl_seconds: int,
    *,
    secret_key: str | None = None,
    algorithm: str | None = None,
) -> str:
    payload = {
        "scope": STORAGE_WRITE_SCOPE,
        "key": key,
        "content_type": content_type,
        "exp": datetime.now(UTC) + timedelta(seconds=ttl_seconds),
    }
    return jwt.encode(
        payload,
        secret_key or settings.jwt_secret_key,
        algorithm=algorithm or settings.jwt_algorithm,
    )


def decode_storage_grant(
    token: str,
    *,
    secret_key: str | None = None,
    algorithm: str | None = None,
) -> dict[str, object]:
    """Decode and verify a storage write grant.

    Raises:
        jwt.InvalidTokenError: Bad signature, expired, or wrong scope.
    """
    claims = jwt.decode(
        token,
        secret_key or settings.jwt_secret_key,
        algorithms=[algorithm or settings.jwt_algorithm],
    )
    if claims.get("scope") != STORAGE_WRITE_SCOPE:
        raise jwt.InvalidTokenError("token is not a storage write grant")
    return claims
