"""LLM-backed line timing estimator.

Asks a chat model for per-line start/end estimates that follow natural
pacing (choruses, pauses). Only used when the transcription provider
returned no segments.
"""

from __future__ import annotations

import json
import logging

from lyrics_vault.ai.client import OpenAICompatClient
from lyrics_vault.errors import ProviderError
from lyrics_vault.lyrics.timing import TimedLine

logger = logging.getLogger(__name__)

PROVIDER = "line_timing"

_PROMPT = """Given these lyrics, estimate reasonable timestamps for each line.
Total song duration: {duration:.1f} seconds.
Average time per line: {average:.2f} seconds.
Return exactly one entry per input line, in order, as JSON:
{{"lines": [{{"text": str, "startTime": number, "endTime": number}}]}}
Consider natural pauses, chorus repetitions, and typical song structure.

Lyrics:
{lyrics}
"""


class ChatLineTimingEstimator:
    def __init__(self, client: OpenAICompatClient, model: str = "gpt-4o") -> None:
        self._client = client
        self._model = model

    async def estimate(self, lines: list[str], duration_seconds: float) -> list[TimedLine]:
        if not lines:
            return []

        prompt = _PROMPT.format(
            duration=duration_seconds,
            average=duration_seconds / len(lines),
            lyrics="\n".join(lines),
        )
        body = await self._client.post_json(
            "/chat/completions",
            provider=PROVIDER,
            json={
                "model": self._model,
                "response_format": {"type": "json_object"},
                "messages": [{"role": "user", "content": prompt}],
            },
        )
        return _parse_lines(body, duration_seconds)


def _parse_lines(body: dict, duration_seconds: float) -> list[TimedLine]:
    try:
        content = body["choices"][0]["message"]["content"]
        raw_lines = json.loads(content)["lines"]
        timed = [
            TimedLine(
                text=str(item["text"]).strip(),
                start_time=min(max(float(item["startTime"]), 0.0), duration_seconds),
                end_time=(
                    min(float(item["endTime"]), duration_seconds)
                    if item.get("endTime") is not None
                    else None
                ),
            )
            for item in raw_lines
        ]
    except (KeyError, IndexError, TypeError, ValueError) as exc:
        raise ProviderError(PROVIDER, f"unparseable timing response: {exc}") from exc

    logger.debug("Estimated timing for %d lines", len(timed))
    return timed
