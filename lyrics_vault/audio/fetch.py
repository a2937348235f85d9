"""Download audio bytes from a public URL."""

from __future__ import annotations

import logging

import httpx

from lyrics_vault.errors import AudioFetchError

logger = logging.getLogger(__name__)


class AudioFetcher:
    """Streams audio over HTTP with a size cap.

    Non-2xx answers, network failures and oversized bodies all surface as
    AudioFetchError; nothing is retried here.
    """

    def __init__(
        self,
        timeout: float = 60.0,
        max_bytes: int = 100 * 1024 * 1024,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = http_client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self._max_bytes = max_bytes

    async def fetch(self, url: str) -> bytes:
        try:
            async with self._client.stream("GET", url) as response:
                if not response.is_success:
                    raise AudioFetchError(url, f"HTTP {response.status_code}")

                buf = bytearray()
                async for chunk in response.aiter_bytes():
                    buf.extend(chunk)
                    if len(buf) > self._max_bytes:
                        raise AudioFetchError(url, f"exceeds {self._max_bytes} bytes")
        except httpx.HTTPError as exc:
            raise AudioFetchError(url, str(exc) or type(exc).__name__) from exc

        if not buf:
            raise AudioFetchError(url, "empty response body")

        logger.info("Fetched %d bytes of audio from %s", len(buf), url)
        return bytes(buf)

    async def aclose(self) -> None:
        await self._client.aclose()
