"""Formatter for SubRip Subtitle format (.srt)."""

from __future__ import annotations

import textwrap
from collections.abc import Sequence

from caption_pipeline.captions.styles import RenderStyle
from caption_pipeline.captions.timing import format_srt_timestamp, quantize_track, to_milliseconds
from caption_pipeline.segments.models import Segment


def to_srt(segments: Sequence[Segment], style: RenderStyle) -> str:
    """Convert segments to an SRT formatted string.

    Args:
        segments: Canonical caption segments.
        style: Resolved style; only ``uppercase`` and ``max_chars_per_line``
            apply to SRT.

    Returns:
        A string in SRT format.

    """
    renderable = [segment for segment in segments if segment.text.strip()]
    spans = quantize_track([(s.start, s.end) for s in renderable], to_milliseconds)

    srt_lines: list[str] = []
    index = 0
    for segment, span in zip(renderable, spans):
        if span is None:
            continue
        index += 1
        text = segment.text.strip()
        if style.uppercase:
            text = text.upper()
        srt_lines.append(str(index))
        srt_lines.append(f"{format_srt_timestamp(span.start)} --> {format_srt_timestamp(span.end)}")
        srt_lines.extend(textwrap.wrap(text, width=style.max_chars_per_line))
        srt_lines.append("")  # Add a blank line between entries
    return "\n".join(srt_lines)
