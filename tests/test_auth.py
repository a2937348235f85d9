"""Tests for bearer identity and storage grant tokens."""

from __future__ import annotations

from datetime import timedelta

import jwt
import pytest

from lyrics_vault.auth.jwt import (
    STORAGE_WRITE_SCOPE,
    create_access_token,
    create_storage_grant,
    decode_access_token,
    decode_storage_grant,
)
from lyrics_vault.auth.oauth2 import get_current_user_id
from lyrics_vault.errors import AuthenticationError
from lyrics_vault.settings import settings


class TestTokens:
    def test_access_token_round_trip(self) -> None:
        claims = decode_access_token(create_access_token("user_1"))
        assert claims["sub"] == "user_1"
        assert "exp" in claims

    def test_expired_access_token_rejected(self) -> None:
        token = create_access_token("user_1", expires_delta=timedelta(seconds=-5))
        with pytest.raises(jwt.ExpiredSignatureError):
            decode_access_token(token)

    def test_grant_carries_scope_key_and_type(self) -> None:
        claims = decode_storage_grant(create_storage_grant("audio/u/1-a.mp3", "audio/mpeg", 60))
        assert claims["scope"] == STORAGE_WRITE_SCOPE
        assert claims["key"] == "audio/u/1-a.mp3"
        assert claims["content_type"] == "audio/mpeg"

    def test_access_token_is_not_a_grant(self) -> None:
        with pytest.raises(jwt.InvalidTokenError):
            decode_storage_grant(create_access_token("user_1"))

    def test_grant_signed_with_other_key_rejected(self) -> None:
        token = create_storage_grant("k", "audio/mpeg", 60, secret_key="other-secret")
        with pytest.raises(jwt.InvalidTokenError):
            decode_storage_grant(token)


class TestGetCurrentUserId:
    async def test_valid_token_yields_subject(self) -> None:
        assert await get_current_user_id(create_access_token("user_9")) == "user_9"

    @pytest.mark.parametrize("token", [None, "", "garbage"])
    async def test_missing_or_malformed_token(self, token) -> None:
        with pytest.raises(AuthenticationError):
            await get_current_user_id(token)

    async def test_expired_token(self) -> None:
        token = create_access_token("user_1", expires_delta=timedelta(seconds=-5))
        with pytest.raises(AuthenticationError, match="expired"):
            await get_current_user_id(token)

    async def test_token_without_subject(self) -> None:
        token = jwt.encode(
            {"scope": "x"}, settings.jwt_secret_key, algorithm=settings.jwt_algorithm
        )
        with pytest.raises(AuthenticationError):
            await get_current_user_id(token)
