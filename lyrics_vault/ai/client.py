"""HTTP client for OpenAI-compatible AI endpoints.

Maps every transport or HTTP failure onto the provider error taxonomy:
rate limits, 5xx, timeouts and connection errors are transient (safe to
retry); any other non-2xx answer is permanent.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from lyrics_vault.errors import ProviderError, TransientProviderError
from lyrics_vault.settings import settings

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES: frozenset[int] = frozenset({408, 409, 425, 429, 500, 502, 503, 504})


def raise_for_provider_status(provider: str, response: httpx.Response) -> None:
    """Raise the matching provider error for a non-2xx response."""
    if response.is_success:
        return

    detail = response.text[:500]
    reason = f"HTTP {response.status_code}: {detail}"
    if response.status_code in TRANSIENT_STATUS_CODES:
        raise TransientProviderError(provider, reason)
    raise ProviderError(provider, reason)


class OpenAICompatClient:
    """Thin async wrapper over ``httpx.AsyncClient`` with error classification.

    Args:
        api_base: Base URL, e.g. ``https://api.openai.com/v1``.
        api_key: Bearer token.
        timeout: Per-request timeout in seconds.
        http_client: Optional pre-built client (tests inject a mock transport).
    """

    def __init__(
        self,
        api_base: str,
        api_key: str,
        timeout: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = http_client or httpx.AsyncClient(
            base_url=api_base.rstrip("/"),
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
        )

    @classmethod
    def from_settings(cls) -> OpenAICompatClient:
        return cls(
            api_base=settings.ai_api_base,
            api_key=settings.ai_api_key,
            timeout=settings.ai_request_timeout_seconds,
        )

    async def post_json(self, path: str, *, provider: str, json: dict[str, Any]) -> dict[str, Any]:
        return await self._send(provider, "POST", path, json=json)

    async def post_multipart(
        self,
        path: str,
        *,
        provider: str,
        data: dict[str, Any],
        files: dict[str, tuple[str, bytes, str]],
    ) -> dict[str, Any]:
        return await self._send(provider, "POST", path, data=data, files=files)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(self, provider: str, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientProviderError(provider, f"request timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientProviderError(provider, f"connection error: {exc}") from exc

        raise_for_provider_status(provider, response)

        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderError(provider, "response body is not valid JSON") from exc

        if not isinstance(body, dict):
            raise ProviderError(provider, "response body is not a JSON object")
        return body
