"""Timestamp quantization and formatting for subtitle formats.

ASS timestamps carry centiseconds, SRT timestamps milliseconds. Cue timings
are quantized once into integer ticks so that formatting never moves a
cue's end past the start of the cue that follows it.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass

# Guards against binary float artefacts such as 0.29 * 100 == 28.999999999999996.
_EPSILON = 1e-6


@dataclass(frozen=True)
class TickSpan:
    """A cue quantized to integer ticks."""

    start: int
    end: int


def to_centiseconds(seconds: float) -> int:
    """Round seconds to the nearest centisecond (halves up)."""
    return max(0, int(math.floor(seconds * 100 + 0.5 + _EPSILON)))


def to_milliseconds(seconds: float) -> int:
    """Truncate seconds to whole milliseconds."""
    return max(0, int(math.floor(seconds * 1000 + _EPSILON)))


def quantize_track(
    spans: Sequence[tuple[float, float]],
    to_ticks: Callable[[float], int],
) -> list[TickSpan | None]:
    """Quantize a sequential track of ``(start, end)`` spans.

    Every cue lasts at least one tick. A cue that did not overlap its
    successor before quantization is clamped so it does not overlap after
    it; cues that end up empty are returned as ``None`` and must be skipped.

    Args:
        spans: Cue timings in seconds, in playback order.
        to_ticks: Seconds-to-ticks conversion for the target format.

    Returns:
        Quantized spans aligned with ``spans``.
    """
    ticks = []
    for start, end in spans:
        start_tick = to_ticks(start)
        end_tick = max(to_ticks(end), start_tick + 1)
        ticks.append([start_tick, end_tick])

    for index in range(len(ticks) - 1):
        raw_end = spans[index][1]
        raw_next_start = spans[index + 1][0]
        next_start_tick = ticks[index + 1][0]
        if raw_end <= raw_next_start and ticks[index][1] > next_start_tick:
            ticks[index][1] = next_start_tick

    return [TickSpan(start, end) if end > start else None for start, end in ticks]


def format_ass_timestamp(centiseconds: int) -> str:
    """Format centiseconds as an ASS timestamp ``H:MM:SS.cc``."""
    if centiseconds < 0:
        raise ValueError(f"timestamp must be non-negative, got {centiseconds}")
    seconds, cs = divmod(centiseconds, 100)
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours:d}:{minutes:02d}:{seconds:02d}.{cs:02d}"


def format_srt_timestamp(milliseconds: int) -> str:
    """Format milliseconds as an SRT timestamp ``HH:MM:SS,mmm``."""
    if milliseconds < 0:
        raise ValueError(f"timestamp must be non-negative, got {milliseconds}")
    seconds, ms = divmod(milliseconds, 1000)
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d},{ms:03d}"
