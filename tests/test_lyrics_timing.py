"""Tests for lyric line timing (lyrics_vault.lyrics.timing)."""

from unittest.mock import AsyncMock

import pytest

from lyrics_vault.lyrics.timing import (
    DEFAULT_DURATION_SECONDS,
    TimedLine,
    TimestampSynchronizer,
    allocate_evenly,
    improve_timestamps,
    split_lines,
    synchronize,
    to_lyric_lines,
)

BEATS = [round(i * 2.39, 2) for i in range(40)]  # 0, 2.39, 4.78, ...


class TestSplitLines:
    def test_drops_blank_lines_and_strips(self) -> None:
        assert split_lines("  first \n\n   \nsecond\r\nthird  ") == ["first", "second", "third"]

    def test_blank_text_has_no_lines(self) -> None:
        assert split_lines("\n  \n") == []


class TestBaselineAllocation:
    """Even allocation: contiguous, non-decreasing, spanning the whole duration."""

    @pytest.mark.parametrize("n", [1, 2, 3, 7, 50])
    @pytest.mark.parametrize("duration", [0.5, 10.0, 187.3])
    def test_contiguous_and_spans_duration(self, n: int, duration: float) -> None:
        text = "\n".join(f"line {i}" for i in range(n))

        lines = synchronize(text, duration)

        assert len(lines) == n
        starts = [line.start_time for line in lines]
        assert starts == sorted(starts)
        for current, nxt in zip(lines, lines[1:], strict=False):
            assert current.end_time == nxt.start_time
        assert lines[0].start_time == 0.0
        assert lines[-1].end_time == pytest.approx(duration)

    def test_each_line_gets_equal_share(self) -> None:
        lines = allocate_evenly(["a", "b", "c", "d"], 20.0)
        assert [(line.start_time, line.end_time) for line in lines] == [
            (0.0, 5.0),
            (5.0, 10.0),
            (10.0, 15.0),
            (15.0, 20.0),
        ]

    def test_unknown_duration_defaults(self) -> None:
        lines = synchronize("a\nb", None)
        assert lines[-1].end_time == pytest.approx(DEFAULT_DURATION_SECONDS)

    def test_blank_text_yields_no_lines(self) -> None:
        assert synchronize("   \n", 60.0) == []


class TestImproveTimestamps:
    def test_empty_lines_is_identity(self) -> None:
        assert improve_timestamps([], BEATS) == []

    def test_no_beats_is_identity(self) -> None:
        lines = [TimedLine("a", 0.3, 1.1), TimedLine("b", 1.1, 2.0)]
        assert improve_timestamps(lines, None) == lines
        assert improve_timestamps(lines, []) == lines

    def test_snaps_to_nearest_not_next_beat(self) -> None:
        improved = improve_timestamps([TimedLine("a", 2.5, 4.0)], BEATS)
        assert improved[0].start_time == 2.39

    def test_tie_goes_to_earlier_beat(self) -> None:
        improved = improve_timestamps([TimedLine("a", 1.0, 2.0)], [0.0, 2.0])
        assert improved[0].start_time == 0.0

    def test_before_first_and_after_last_beat_clamp(self) -> None:
        improved = improve_timestamps(
            [TimedLine("a", 0.1, 1.0), TimedLine("b", 99.0, 100.0)], [1.0, 2.0, 3.0]
        )
        assert [line.start_time for line in improved] == [1.0, 3.0]

    def test_ends_follow_next_snapped_start_and_last_keeps_end(self) -> None:
        lines = [TimedLine("a", 0.2, 5.0), TimedLine("b", 5.0, 9.9), TimedLine("c", 9.9, 15.0)]

        improved = improve_timestamps(lines, [0.0, 4.8, 10.1])

        assert [(ln.start_time, ln.end_time) for ln in improved] == [
            (0.0, 4.8),
            (4.8, 10.1),
            (10.1, 15.0),
        ]

    def test_unsorted_beats_are_accepted(self) -> None:
        improved = improve_timestamps([TimedLine("a", 2.5, 4.0)], [4.78, 0.0, 2.39])
        assert improved[0].start_time == 2.39

    def test_text_is_untouched(self) -> None:
        improved = improve_timestamps([TimedLine("keep me", 2.5, 4.0)], BEATS)
        assert improved[0].text == "keep me"


class TestToLyricLines:
    def test_assigns_contiguous_order_index(self) -> None:
        rows = to_lyric_lines(allocate_evenly(["a", "b", "c"], 9.0))
        assert [r.order_index for r in rows] == [0, 1, 2]
        assert [r.text for r in rows] == ["a", "b", "c"]

    def test_negative_start_is_clamped(self) -> None:
        rows = to_lyric_lines([TimedLine("a", -0.2, 1.0)])
        assert rows[0].start_time == 0.0


class TestTimestampSynchronizer:
    async def test_without_estimator_allocates_evenly(self) -> None:
        lines = await TimestampSynchronizer().synchronize("a\nb", 10.0)
        assert [(ln.start_time, ln.end_time) for ln in lines] == [(0.0, 5.0), (5.0, 10.0)]

    async def test_uses_estimator_timing(self) -> None:
        estimator = AsyncMock()
        estimator.estimate.return_value = [TimedLine("a", 0.0, 3.0), TimedLine("b", 3.0, 10.0)]

        lines = await TimestampSynchronizer(estimator).synchronize("a\nb", 10.0)

        estimator.estimate.assert_awaited_once_with(["a", "b"], 10.0)
        assert lines[1].start_time == 3.0

    async def test_estimator_failure_falls_back_to_even(self) -> None:
        estimator = AsyncMock()
        estimator.estimate.side_effect = RuntimeError("provider down")

        lines = await TimestampSynchronizer(estimator).synchronize("a\nb", 10.0)

        assert [ln.start_time for ln in lines] == [0.0, 5.0]

    async def test_estimator_line_count_mismatch_falls_back(self) -> None:
        estimator = AsyncMock()
        estimator.estimate.return_value = [TimedLine("a", 0.0, 10.0)]

        lines = await TimestampSynchronizer(estimator).synchronize("a\nb", 10.0)

        assert len(lines) == 2
        assert lines[1].start_time == 5.0

    async def test_beats_applied_after_allocation(self) -> None:
        lines = await TimestampSynchronizer().synchronize("a\nb", 10.0, beat_times=[0.0, 4.9])
        assert [ln.start_time for ln in lines] == [0.0, 4.9]

    async def test_blank_text_skips_estimator(self) -> None:
        estimator = AsyncMock()
        assert await TimestampSynchronizer(estimator).synchronize("  ", 10.0) == []
        estimator.estimate.assert_not_awaited()
