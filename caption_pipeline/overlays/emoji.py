"""Keyword-triggered emoji overlays composited by the rendering worker.

Overlays are timed to the whole segment that mentions the keyword and placed
just below the caption baseline; the worker animates them upward over
``riseMs``.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel, Field

from caption_pipeline.captions.styles import resolve_canvas
from caption_pipeline.segments.models import Segment
from caption_pipeline.utils.constant import EMOJI_ASSET_BASE_URL

__all__ = ["EMOJI_ASSET_URLS", "EMOJI_CODEPOINTS", "Overlay", "build_emoji_overlays", "emoji_url"]

_TOKEN_STRIP = re.compile(r"[^a-z0-9-]")

DEFAULT_OFFSET_PX = 30
DEFAULT_RISE_MS = 400
DEFAULT_EMOJI_SIZE = 140

# Twemoji codepoints keyed by normalized token.
EMOJI_CODEPOINTS: dict[str, str] = {
    "money": "1f4b0",
    "cash": "1f4b5",
    "rich": "1f4b8",
    "wealth": "1f4b8",
    "profit": "1f4c8",
    "growth": "1f4c8",
    "upgrade": "1f680",
    "boss": "1f4aa",
    "win": "1f3c6",
    "victory": "1f3c6",
    "hype": "1f525",
    "fire": "1f525",
    "lit": "1f525",
    "trending": "1f525",
    "wow": "1f929",
    "awesome": "1f929",
    "shocked": "1f631",
    "speed": "1f4ab",
    "fast": "1f4ab",
    "rocket": "1f680",
    "danger": "26a0",
    "warning": "26a0",
    "caution": "26a0",
    "boom": "1f4a5",
    "explosion": "1f4a5",
    "dead": "2620",
    "skull": "2620",
    "crazy": "1f92f",
    "love": "2764",
    "heart": "2764",
    "broken": "1f494",
    "sad": "1f622",
    "cry": "1f622",
    "surprise": "1f632",
    "fear": "1f631",
    "smile": "1f642",
    "happy": "1f642",
    "angry": "1f620",
    "star": "2b50",
    "sparkle": "2728",
    "magic": "2728",
    "party": "1f389",
    "celebrate": "1f389",
    "king": "1f451",
    "queen": "1f451",
    "gift": "1f381",
    "blast": "1f4a3",
    "idea": "1f4a1",
    "light": "1f4a1",
    "brain": "1f9e0",
    "smart": "1f9e0",
    "thinking": "1f914",
    "question": "2753",
    "check": "2705",
    "break": "1f6a8",
    "alert": "1f6a8",
    "flex": "1f4aa",
    "freeze": "2744",
    "heat": "1f525",
    "thumbs-up": "1f44d",
}

# Animated assets that replace the Twemoji image for a codepoint.
EMOJI_ASSET_URLS: dict[str, str] = {
    "1f4b0": "https://raw.githubusercontent.com/notankith/cloudinarytest/refs/heads/main/Money.gif",
}


class Overlay(BaseModel):
    """A timed, positioned image composited over the video."""

    url: str = Field(..., description="Image asset URL.")
    start: float = Field(..., description="Display start (seconds).")
    end: float = Field(..., description="Display end (seconds).")
    x: int = Field(..., description="Left anchor in canvas pixels.")
    y: int = Field(..., description="Target top position in canvas pixels.")
    width: int = Field(..., description="Rendered width in canvas pixels.")
    playResY: int = Field(..., description="Canvas height the coordinates refer to.")  # noqa: N815
    riseMs: int = Field(..., description="Duration of the rise-in animation.")  # noqa: N815


def emoji_url(codepoint: str) -> str:
    """Build the asset URL for a Twemoji codepoint."""
    if codepoint in EMOJI_ASSET_URLS:
        return EMOJI_ASSET_URLS[codepoint]
    return f"{EMOJI_ASSET_BASE_URL.rstrip('/')}/{codepoint}.png"


def _number(styles: Mapping[str, Any], key: str) -> float | None:
    value = styles.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if math.isfinite(value) else None


def build_emoji_overlays(
    segments: Sequence[Segment],
    custom_styles: Mapping[str, Any] | None = None,
) -> list[Overlay]:
    """Emit one overlay per keyword token found in each segment.

    Tokens are lower-cased and stripped of everything outside ``[a-z0-9-]``
    before lookup. Repeated keywords in one segment produce repeated
    overlays.

    Args:
        segments: Canonical caption segments.
        custom_styles: ``customStyles`` mapping; reads ``playResY``,
            ``marginV``, ``emojiOffsetPx``, ``emojiRiseMs`` and ``emojiSize``.

    Returns:
        Overlays in segment then token order.
    """
    styles = custom_styles if isinstance(custom_styles, Mapping) else {}
    canvas = resolve_canvas(styles)
    play_res_y = canvas.play_res_y

    default_offset = math.floor(play_res_y * 0.03 + 0.5) or DEFAULT_OFFSET_PX
    offset = _number(styles, "emojiOffsetPx")
    rise_ms = _number(styles, "emojiRiseMs")
    size = _number(styles, "emojiSize")

    target_y = canvas.baseline_y + int(offset if offset is not None else default_offset)
    overlays: list[Overlay] = []
    for segment in segments:
        for token in segment.text.lower().split():
            codepoint = EMOJI_CODEPOINTS.get(_TOKEN_STRIP.sub("", token))
            if codepoint is None:
                continue
            overlays.append(
                Overlay(
                    url=emoji_url(codepoint),
                    start=segment.start,
                    end=segment.end,
                    x=0,
                    y=target_y,
                    width=int(size if size is not None else DEFAULT_EMOJI_SIZE),
                    playResY=play_res_y,
                    riseMs=int(rise_ms if rise_ms is not None else DEFAULT_RISE_MS),
                )
            )
    return overlays
