"""Caption template styles and resolution of per-request style overrides.

Templates are defined for a 1080-line canvas. Overrides arrive as the
loosely-typed ``customStyles`` mapping of a render request; every value is
coerced individually and falls back to the template default when it is
missing or malformed, so a bad override never aborts a render.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from caption_pipeline.utils.logging_config import get_logger

logger = get_logger(__name__)

REFERENCE_PLAY_RES_Y = 1080
DEFAULT_PLAY_RES_X = 1920
DEFAULT_PLAY_RES_Y = 1080
DEFAULT_MARGIN_V = 50

_HEX_COLOR = re.compile(r"^#?([0-9A-Fa-f]{6})$")
_ASS_COLOR = re.compile(r"^&H([0-9A-Fa-f]{6}|[0-9A-Fa-f]{8})&?$")


@dataclass(frozen=True)
class KaraokeSettings:
    """Word-by-word highlight settings.

    Attributes:
        highlight_colors: Palette cycled through as chunks advance.
        cycle_after_chunks: Chunks shown before switching to the next color.
        max_lines_per_chunk: Lines rendered simultaneously.
        line_gap_ratio: Distance between stacked lines as a multiple of font size.
        line_center_percent: Vertical centre of the stack in percent of frame
            height; ``None`` stacks upward from the caption baseline.
        words_per_line: Words grouped on one line.
    """

    highlight_colors: tuple[str, ...] = ("#FFE600",)
    cycle_after_chunks: int = 2
    max_lines_per_chunk: int = 1
    line_gap_ratio: float = 1.2
    line_center_percent: float | None = None
    words_per_line: int = 3


@dataclass(frozen=True)
class TemplateStyle:
    """Visual definition of a caption template at the 1080-line reference size."""

    name: str
    font_family: str
    font_size: int
    primary_color: str = "#FFFFFF"
    outline_color: str = "#000000"
    outline_width: int = 3
    shadow_color: str = "#000000"
    shadow_width: int = 0
    alignment: int = 2
    margin_v: int = DEFAULT_MARGIN_V
    uppercase: bool = False
    bold: bool = True
    max_chars_per_line: int = 42
    karaoke: KaraokeSettings | None = None


TEMPLATE_STYLES: dict[str, TemplateStyle] = {
    "karaoke": TemplateStyle(
        name="karaoke",
        font_family="Montserrat",
        font_size=72,
        outline_width=4,
        shadow_width=2,
        alignment=5,
        uppercase=True,
        karaoke=KaraokeSettings(
            highlight_colors=("#FFE600", "#00E5FF", "#7CFF4F"),
            cycle_after_chunks=2,
            max_lines_per_chunk=2,
            line_gap_ratio=1.2,
            line_center_percent=70.0,
            words_per_line=3,
        ),
    ),
    "minimal": TemplateStyle(
        name="minimal",
        font_family="Inter",
        font_size=56,
        outline_width=2,
        bold=False,
    ),
    "plain": TemplateStyle(
        name="plain",
        font_family="Arial",
        font_size=48,
        bold=False,
    ),
}


@dataclass(frozen=True)
class RenderStyle:
    """A template style resolved against a canvas and request overrides."""

    font_family: str
    font_size: int
    primary_color: str
    outline_color: str
    outline_width: int
    shadow_color: str
    shadow_width: int
    alignment: int
    margin_v: int
    uppercase: bool
    bold: bool
    max_chars_per_line: int
    play_res_x: int
    play_res_y: int
    highlight_colors: tuple[str, ...] = field(default_factory=tuple)
    cycle_after_chunks: int = 2
    max_lines_per_chunk: int = 1
    line_gap_ratio: float = 1.2
    line_center_percent: float | None = None
    words_per_line: int = 3

    @property
    def baseline_y(self) -> int:
        """Caption baseline anchor (``playResY - marginV``)."""
        return self.play_res_y - self.margin_v

    @property
    def center_x(self) -> int:
        return round_half_up(self.play_res_x / 2)


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up."""
    return int(math.floor(value + 0.5))


def _fallback(key: str, value: Any, default: Any) -> Any:
    logger.debug("Ignoring malformed style override %s=%r; using %r", key, value, default)
    return default


def _positive_int(overrides: Mapping[str, Any], key: str, default: int) -> int:
    value = overrides.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return _fallback(key, value, default)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return _fallback(key, value, default)
    if not math.isfinite(number):
        return _fallback(key, value, default)
    rounded = round_half_up(number)
    if rounded < 1:
        return _fallback(key, value, default)
    return rounded


def _non_negative_int(overrides: Mapping[str, Any], key: str, default: int) -> int:
    value = overrides.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return _fallback(key, value, default)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return _fallback(key, value, default)
    if not math.isfinite(number) or number < 0:
        return _fallback(key, value, default)
    return round_half_up(number)


def _bounded_float(
    overrides: Mapping[str, Any],
    key: str,
    default: float | None,
    *,
    low: float,
    high: float,
) -> float | None:
    value = overrides.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return _fallback(key, value, default)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return _fallback(key, value, default)
    if not math.isfinite(number) or not low <= number <= high:
        return _fallback(key, value, default)
    return number


def _flag(overrides: Mapping[str, Any], key: str, default: bool) -> bool:
    value = overrides.get(key)
    if isinstance(value, bool):
        return value
    if value is not None:
        return _fallback(key, value, default)
    return default


def _text(overrides: Mapping[str, Any], key: str, default: str) -> str:
    value = overrides.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    if value is not None:
        return _fallback(key, value, default)
    return default


def is_valid_color(value: Any) -> bool:
    """Return ``True`` for ``#RRGGBB`` or ASS ``&HBBGGRR&`` colors."""
    return isinstance(value, str) and bool(
        _HEX_COLOR.match(value.strip()) or _ASS_COLOR.match(value.strip())
    )


def to_ass_color(value: str) -> str:
    """Convert ``#RRGGBB`` into ASS ``&H00BBGGRR`` notation.

    ASS-formatted input is normalised to upper case and returned as is.

    Raises:
        ValueError: If ``value`` is not a recognised color.
    """
    candidate = value.strip()
    hex_match = _HEX_COLOR.match(candidate)
    if hex_match:
        rgb = hex_match.group(1).upper()
        return f"&H00{rgb[4:6]}{rgb[2:4]}{rgb[0:2]}"
    ass_match = _ASS_COLOR.match(candidate)
    if ass_match:
        digits = ass_match.group(1).upper()
        return f"&H{digits.rjust(8, '0')}"
    raise ValueError(f"Unsupported color: {value!r}")


def _color(overrides: Mapping[str, Any], key: str, default: str) -> str:
    value = overrides.get(key)
    if value is None:
        return default
    if is_valid_color(value):
        return str(value).strip()
    return _fallback(key, value, default)


def _palette(overrides: Mapping[str, Any], default: tuple[str, ...]) -> tuple[str, ...]:
    colors = overrides.get("highlightColors")
    if isinstance(colors, (list, tuple)):
        valid = tuple(str(color).strip() for color in colors if is_valid_color(color))
        if valid:
            return valid
        return _fallback("highlightColors", colors, default)
    if colors is not None:
        return _fallback("highlightColors", colors, default)
    single = overrides.get("highlightColor")
    if single is not None:
        if is_valid_color(single):
            return (str(single).strip(),)
        return _fallback("highlightColor", single, default)
    return default


@dataclass(frozen=True)
class Canvas:
    """Resolved canvas size and bottom margin."""

    play_res_x: int
    play_res_y: int
    margin_v: int

    @property
    def baseline_y(self) -> int:
        return self.play_res_y - self.margin_v


def resolve_canvas(
    overrides: Mapping[str, Any] | None = None, default_margin_v: int = DEFAULT_MARGIN_V
) -> Canvas:
    """Coerce ``playResX``, ``playResY`` and ``marginV`` overrides.

    Caption markup and emoji overlays both anchor on the baseline computed
    here.
    """
    overrides = overrides if isinstance(overrides, Mapping) else {}
    play_res_x = _positive_int(overrides, "playResX", DEFAULT_PLAY_RES_X)
    play_res_y = _positive_int(overrides, "playResY", DEFAULT_PLAY_RES_Y)
    margin_v = _non_negative_int(overrides, "marginV", default_margin_v)
    if margin_v >= play_res_y:
        margin_v = _fallback("marginV", margin_v, min(default_margin_v, play_res_y - 1))
    return Canvas(play_res_x=play_res_x, play_res_y=play_res_y, margin_v=margin_v)


def resolve_style(template: TemplateStyle, overrides: Mapping[str, Any] | None = None) -> RenderStyle:
    """Resolve ``template`` against request overrides.

    Font size scales with ``playResY`` unless ``fontSize`` is given
    explicitly. Margins are absolute pixels so the caption baseline matches
    the emoji overlay builder for the same overrides.

    Args:
        template: Template definition.
        overrides: ``customStyles`` mapping from the request.

    Returns:
        Fully-resolved style.
    """
    overrides = overrides if isinstance(overrides, Mapping) else {}
    canvas = resolve_canvas(overrides, template.margin_v)
    play_res_x, play_res_y, margin_v = canvas.play_res_x, canvas.play_res_y, canvas.margin_v
    scaled_font = max(1, round_half_up(template.font_size * play_res_y / REFERENCE_PLAY_RES_Y))

    karaoke = template.karaoke or KaraokeSettings()
    return RenderStyle(
        font_family=_text(overrides, "fontFamily", template.font_family),
        font_size=_positive_int(overrides, "fontSize", scaled_font),
        primary_color=_color(overrides, "primaryColor", template.primary_color),
        outline_color=_color(overrides, "outlineColor", template.outline_color),
        outline_width=_non_negative_int(overrides, "outlineWidth", template.outline_width),
        shadow_color=_color(overrides, "shadowColor", template.shadow_color),
        shadow_width=_non_negative_int(overrides, "shadowWidth", template.shadow_width),
        alignment=template.alignment,
        margin_v=margin_v,
        uppercase=_flag(overrides, "uppercase", template.uppercase),
        bold=template.bold,
        max_chars_per_line=_positive_int(
            overrides, "maxCharsPerLine", template.max_chars_per_line
        ),
        play_res_x=play_res_x,
        play_res_y=play_res_y,
        highlight_colors=_palette(overrides, karaoke.highlight_colors),
        cycle_after_chunks=_positive_int(
            overrides, "cycleAfterChunks", karaoke.cycle_after_chunks
        ),
        max_lines_per_chunk=_positive_int(
            overrides, "maxLinesPerChunk", karaoke.max_lines_per_chunk
        ),
        line_gap_ratio=_bounded_float(
            overrides, "lineGapRatio", karaoke.line_gap_ratio, low=0.0, high=10.0
        ),
        line_center_percent=_bounded_float(
            overrides, "lineCenterPercent", karaoke.line_center_percent, low=0.0, high=100.0
        ),
        words_per_line=_positive_int(overrides, "wordsPerLine", karaoke.words_per_line),
    )
