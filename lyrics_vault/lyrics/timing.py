"""Lyric line timing: baseline allocation and beat-alignment refinement.

Algorithm:
1. Split the full text into non-blank lines.
2. Allocate start/end times, either from an external line-timing estimator
   (natural pacing) or evenly: ``time_per_line = duration / N``.
3. Optionally snap each line start to the nearest externally supplied beat
   time; each line then ends where the next (snapped) line starts.
"""

from __future__ import annotations

import bisect
import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import Protocol

logger = logging.getLogger(__name__)

DEFAULT_DURATION_SECONDS: float = 180.0


@dataclass(frozen=True)
class TimedLine:
    """A lyric line with playback timing (seconds)."""

    text: str
    start_time: float
    end_time: float | None = None


@dataclass(frozen=True)
class LyricLineData:
    """A timed line with its authoritative display position."""

    text: str
    start_time: float
    end_time: float | None
    order_index: int


class LineTimingEstimator(Protocol):
    """External collaborator producing per-line timing estimates."""

    async def estimate(self, lines: list[str], duration_seconds: float) -> list[TimedLine]: ...


def split_lines(full_text: str) -> list[str]:
    """Split on line breaks, stripping whitespace and dropping blank lines."""
    return [line.strip() for line in full_text.splitlines() if line.strip()]


def allocate_evenly(lines: Sequence[str], duration_seconds: float) -> list[TimedLine]:
    """Baseline allocation: every line gets ``duration / N`` seconds."""
    if not lines:
        return []
    time_per_line = duration_seconds / len(lines)
    return [
        TimedLine(
            text=text,
            start_time=i * time_per_line,
            end_time=(i + 1) * time_per_line,
        )
        for i, text in enumerate(lines)
    ]


def synchronize(full_text: str, total_duration_seconds: float | None = None) -> list[TimedLine]:
    """Deterministic timing for ``full_text`` spread across the song duration.

    Args:
        full_text: Raw lyrics, one line per line break.
        total_duration_seconds: Song length. Defaults to 180s when unknown.

    Returns:
        One TimedLine per non-blank line; empty when there are none.
    """
    duration = total_duration_seconds or DEFAULT_DURATION_SECONDS
    return allocate_evenly(split_lines(full_text), duration)


def _nearest_beat(sorted_beats: Sequence[float], t: float) -> float:
    """Nearest value in ``sorted_beats`` to ``t``; ties go to the earlier beat."""
    i = bisect.bisect_left(sorted_beats, t)
    if i == 0:
        return sorted_beats[0]
    if i == len(sorted_beats):
        return sorted_beats[-1]
    before = sorted_beats[i - 1]
    after = sorted_beats[i]
    return after if (after - t) < (t - before) else before


def improve_timestamps(
    lines: Sequence[TimedLine],
    beat_times: Sequence[float] | None = None,
) -> list[TimedLine]:
    """Snap line starts to the nearest beat.

    Greedy nearest-neighbour snap; two lines may land on the same beat.
    Each line's end becomes the next line's snapped start, and the last
    line keeps its own end.

    Args:
        lines: Timed lines in display order.
        beat_times: Beat timestamps in seconds. ``None`` or empty leaves the
            lines unchanged.
    """
    if not beat_times or not lines:
        return list(lines)

    beats = sorted(beat_times)
    starts = [_nearest_beat(beats, line.start_time) for line in lines]

    improved: list[TimedLine] = []
    for i, line in enumerate(lines):
        end_time = starts[i + 1] if i + 1 < len(lines) else line.end_time
        improved.append(replace(line, start_time=starts[i], end_time=end_time))

    logger.debug("Aligned %d lines to %d beats", len(lines), len(beats))
    return improved


def to_lyric_lines(lines: Sequence[TimedLine]) -> list[LyricLineData]:
    """Assign contiguous 0-based ``order_index`` values in sequence order."""
    return [
        LyricLineData(
            text=line.text,
            start_time=max(line.start_time, 0.0),
            end_time=line.end_time,
            order_index=i,
        )
        for i, line in enumerate(lines)
    ]


class TimestampSynchronizer:
    """Turns raw lyric text into timed lines.

    Uses the estimator when one is configured and it answers with exactly one
    timing per line; otherwise falls back to the even baseline allocation.
    """

    def __init__(self, estimator: LineTimingEstimator | None = None) -> None:
        self._estimator = estimator

    async def synchronize(
        self,
        full_text: str,
        total_duration_seconds: float | None = None,
        beat_times: Sequence[float] | None = None,
    ) -> list[TimedLine]:
        lines = split_lines(full_text)
        if not lines:
            return []

        duration = total_duration_seconds or DEFAULT_DURATION_SECONDS
        timed = await self._estimate(lines, duration)
        if timed is None:
            timed = allocate_evenly(lines, duration)

        return improve_timestamps(timed, beat_times)

    async def _estimate(self, lines: list[str], duration: float) -> list[TimedLine] | None:
        if self._estimator is None:
            return None
        try:
            estimated = await self._estimator.estimate(lines, duration)
        except Exception as exc:
            logger.warning("Line timing estimator failed, using even allocation: %s", exc)
            return None

        if len(estimated) != len(lines):
            logger.warning(
                "Line timing estimator returned %d lines for %d, using even allocation",
                len(estimated),
                len(lines),
            )
            return None
        return estimated
