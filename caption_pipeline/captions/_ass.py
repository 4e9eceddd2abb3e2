"""Formatter for Advanced SubStation Alpha captions (.ass)."""

from __future__ import annotations

import textwrap
from collections.abc import Sequence
from dataclasses import dataclass

from caption_pipeline.captions.styles import RenderStyle, round_half_up, to_ass_color
from caption_pipeline.captions.timing import (
    format_ass_timestamp,
    quantize_track,
    to_centiseconds,
)
from caption_pipeline.segments.models import Segment, Word
from caption_pipeline.segments.normalize import distribute_words_evenly

STYLE_NAME = "Default"

_STYLE_FORMAT = (
    "Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, "
    "BackColour, Bold, Italic, Underline, StrikeOut, ScaleX, ScaleY, Spacing, Angle, "
    "BorderStyle, Outline, Shadow, Alignment, MarginL, MarginR, MarginV, Encoding"
)
_EVENT_FORMAT = "Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text"


@dataclass(frozen=True)
class _Window:
    """One highlight step of a karaoke chunk."""

    start: float
    end: float
    lines: tuple[tuple[Word, ...], ...]
    active: Word
    color: str


def escape_ass_text(text: str) -> str:
    """Neutralise characters ASS would interpret as override blocks or escapes."""
    return (
        text.replace("\\", "/")
        .replace("{", "(")
        .replace("}", ")")
        .replace("\r", " ")
        .replace("\n", " ")
    )


def build_header(style: RenderStyle) -> str:
    """Build the ``[Script Info]``, ``[V4+ Styles]`` and ``[Events]`` preamble."""
    bold = -1 if style.bold else 0
    style_line = (
        f"Style: {STYLE_NAME},{style.font_family},{style.font_size},"
        f"{to_ass_color(style.primary_color)},{to_ass_color(style.primary_color)},"
        f"{to_ass_color(style.outline_color)},{to_ass_color(style.shadow_color)},"
        f"{bold},0,0,0,100,100,0,0,1,{style.outline_width},{style.shadow_width},"
        f"{style.alignment},0,0,{style.margin_v},1"
    )
    lines = [
        "[Script Info]",
        "ScriptType: v4.00+",
        f"PlayResX: {style.play_res_x}",
        f"PlayResY: {style.play_res_y}",
        "WrapStyle: 2",
        "ScaledBorderAndShadow: yes",
        "",
        "[V4+ Styles]",
        _STYLE_FORMAT,
        style_line,
        "",
        "[Events]",
        _EVENT_FORMAT,
    ]
    return "\n".join(lines)


def _dialogue(start_cs: int, end_cs: int, text: str) -> str:
    return (
        f"Dialogue: 0,{format_ass_timestamp(start_cs)},{format_ass_timestamp(end_cs)},"
        f"{STYLE_NAME},,0,0,0,,{text}"
    )


def _display(text: str, style: RenderStyle) -> str:
    shown = escape_ass_text(text)
    return shown.upper() if style.uppercase else shown


def line_positions(line_count: int, style: RenderStyle) -> tuple[str, list[int]]:
    """Return the alignment tag and the Y coordinate of each stacked line.

    With ``line_center_percent`` set, lines are centred (``\\an5``) around that
    share of the frame height; otherwise they are bottom-anchored (``\\an2``)
    with the last line on the caption baseline.
    """
    gap = round_half_up(style.line_gap_ratio * style.font_size)
    if style.line_center_percent is not None:
        center = style.play_res_y * style.line_center_percent / 100
        first = center - (line_count - 1) * gap / 2
        return "\\an5", [round_half_up(first + index * gap) for index in range(line_count)]
    base = style.baseline_y
    return "\\an2", [base - (line_count - 1 - index) * gap for index in range(line_count)]


def _segment_words(segment: Segment) -> list[Word]:
    words = segment.words or distribute_words_evenly(segment.text, segment.start, segment.end)
    return [word for word in words if word.text.strip()]


def _karaoke_windows(segments: Sequence[Segment], style: RenderStyle) -> list[_Window]:
    windows: list[_Window] = []
    colors = style.highlight_colors or (style.primary_color,)
    chunk_index = 0

    for segment in segments:
        words = _segment_words(segment)
        if not words:
            continue
        per_line = style.words_per_line
        lines = [tuple(words[i : i + per_line]) for i in range(0, len(words), per_line)]
        per_chunk = style.max_lines_per_chunk
        chunks = [lines[i : i + per_chunk] for i in range(0, len(lines), per_chunk)]

        for chunk_no, chunk in enumerate(chunks):
            color = colors[(chunk_index // style.cycle_after_chunks) % len(colors)]
            chunk_index += 1
            chunk_words = [word for line in chunk for word in line]
            is_last = chunk_no == len(chunks) - 1
            chunk_start = segment.start if chunk_no == 0 else max(segment.start, chunk_words[0].start)
            if is_last:
                chunk_end = segment.end
            else:
                chunk_end = min(segment.end, max(chunk_start, chunks[chunk_no + 1][0][0].start))

            cursor = chunk_start
            for position, word in enumerate(chunk_words):
                if position == len(chunk_words) - 1:
                    window_end = chunk_end
                else:
                    window_end = chunk_words[position + 1].start
                window_end = min(max(window_end, cursor), chunk_end)
                windows.append(
                    _Window(
                        start=cursor,
                        end=window_end,
                        lines=tuple(chunk),
                        active=word,
                        color=color,
                    )
                )
                cursor = window_end
    return windows


def to_ass_karaoke(segments: Sequence[Segment], style: RenderStyle) -> str:
    """Render word-by-word highlighted captions.

    Every word window produces one ``Dialogue`` per visible line; the active
    word is recoloured with the chunk's palette color.
    """
    windows = _karaoke_windows(segments, style)
    spans = quantize_track([(w.start, w.end) for w in windows], to_centiseconds)
    x = style.center_x

    events: list[str] = []
    for window, span in zip(windows, spans):
        if span is None:
            continue
        align, ys = line_positions(len(window.lines), style)
        highlight = to_ass_color(window.color)
        for line, y in zip(window.lines, ys):
            rendered = []
            for word in line:
                shown = _display(word.text, style)
                if word is window.active:
                    shown = f"{{\\1c{highlight}&}}{shown}{{\\r}}"
                rendered.append(shown)
            events.append(_dialogue(span.start, span.end, f"{{{align}\\pos({x},{y})}}{' '.join(rendered)}"))

    return build_header(style) + "\n" + "".join(f"{event}\n" for event in events)


def to_ass_minimal(segments: Sequence[Segment], style: RenderStyle) -> str:
    """Render one static, bottom-anchored caption per segment."""
    renderable = [segment for segment in segments if segment.text.strip()]
    spans = quantize_track([(s.start, s.end) for s in renderable], to_centiseconds)
    position = f"{{\\an2\\pos({style.center_x},{style.baseline_y})}}"

    events: list[str] = []
    for segment, span in zip(renderable, spans):
        if span is None:
            continue
        wrapped = textwrap.wrap(_display(segment.text, style), width=style.max_chars_per_line)
        events.append(_dialogue(span.start, span.end, position + "\\N".join(wrapped)))

    return build_header(style) + "\n" + "".join(f"{event}\n" for event in events)
