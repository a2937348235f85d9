"""Domain error taxonomy.

Every component maps its internal failures into one of these kinds at its
public boundary. The HTTP layer (``main.create_app``) turns them into the
project's JSON error envelope.
"""

from __future__ import annotations


class LyricsVaultError(Exception):
    """Base class for all domain errors.

    Attributes:
        code: Machine-readable error code used in the JSON error envelope.
        message: Human-readable description.
    """

    code = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(LyricsVaultError):
    """Bad caller input. Never retried."""

    code = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class NotFoundError(LyricsVaultError):
    code = "NOT_FOUND"

    def __init__(self, resource: str, id: object) -> None:  # noqa: A002
        self.resource = resource
        self.id = id
        super().__init__(f"No {resource} found with id {id}")


class DatabaseError(LyricsVaultError):
    """Persistence failure. The caller may retry the whole operation."""

    code = "DATABASE_ERROR"

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        self.reason = reason
        super().__init__(f"Database operation '{operation}' failed: {reason}")


class AuthenticationError(LyricsVaultError):
    """Missing or invalid bearer token."""

    code = "UNAUTHENTICATED"

    def __init__(self, reason: str = "authentication required") -> None:
        super().__init__(reason)


class AuthorizationError(LyricsVaultError):
    """The actor does not own the resource it is trying to mutate."""

    code = "FORBIDDEN"

    def __init__(self, actor: str | None, resource: str) -> None:
        self.actor = actor
        self.resource = resource
        super().__init__(f"Only the owner may modify {resource}")


class ProviderError(LyricsVaultError):
    """Permanent failure from an external AI/vector provider."""

    code = "PROVIDER_ERROR"

    def __init__(self, provider: str, reason: str) -> None:
        self.provider = provider
        self.reason = reason
        super().__init__(f"{provider} failed: {reason}")


class TransientProviderError(ProviderError):
    """Retryable provider failure (rate limit, 5xx, timeout, connection reset).

    This is the only kind the transcription retry loop retries on.
    """

    code = "PROVIDER_UNAVAILABLE"


class AudioFetchError(LyricsVaultError):
    """Audio could not be downloaded from its URL (non-2xx or network error)."""

    code = "AUDIO_FETCH_FAILED"

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to fetch audio from {url}: {reason}")


def is_transient(exc: BaseException) -> bool:
    """Default retry classification: only ``TransientProviderError`` is retried."""
    return isinstance(exc, TransientProviderError)
