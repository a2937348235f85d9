"""Domain error -> HTTP status mapping."""

import pytest

from lyrics_vault.errors import (
    AudioFetchError,
    AuthenticationError,
    AuthorizationError,
    DatabaseError,
    LyricsVaultError,
    NotFoundError,
    ProviderError,
    TransientProviderError,
    ValidationError,
    is_transient,
)
from lyrics_vault.main import status_for


@pytest.mark.parametrize(
    ("exc", "status"),
    [
        (ValidationError("f", "bad"), 400),
        (AuthenticationError(), 401),
        (AuthorizationError("u", "song x"), 403),
        (NotFoundError("song", "x"), 404),
        (ProviderError("transcription", "bad request"), 502),
        (TransientProviderError("transcription", "rate limited"), 503),
        (AudioFetchError("http://x", "HTTP 404"), 502),
        (DatabaseError("op", "gone"), 503),
        (LyricsVaultError("unknown"), 500),
    ],
)
def test_status_for(exc: LyricsVaultError, status: int) -> None:
    assert status_for(exc) == status


def test_only_transient_provider_errors_are_retryable() -> None:
    assert is_transient(TransientProviderError("p", "x"))
    assert not is_transient(ProviderError("p", "x"))
    assert not is_transient(DatabaseError("op", "x"))
    assert not is_transient(RuntimeError("x"))
