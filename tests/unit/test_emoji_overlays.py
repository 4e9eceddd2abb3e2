"""Unit tests for keyword emoji overlays."""

from __future__ import annotations

from typing import Any

import pytest

from caption_pipeline.captions.styles import TEMPLATE_STYLES, resolve_style
from caption_pipeline.overlays import build_emoji_overlays
from caption_pipeline.segments import Segment


def test_build_emoji_overlays__matches_keywords_only() -> None:
    """Punctuation is stripped before lookup; emoji characters never match."""
    segments = [Segment(id="s1", start=1.0, end=2.5, text="that's so fire 🔥 money moves")]

    overlays = build_emoji_overlays(segments)

    assert [overlay.url.rsplit("/", 1)[-1] for overlay in overlays] == ["1f525.png", "Money.gif"]
    for overlay in overlays:
        assert overlay.start == 1.0
        assert overlay.end == 2.5
        assert overlay.x == 0
        assert overlay.y == 1030 + 32
        assert overlay.width == 140
        assert overlay.playResY == 1080
        assert overlay.riseMs == 400


def test_build_emoji_overlays__respects_style_overrides() -> None:
    segments = [Segment(id="s1", start=0.0, end=1.0, text="WIN! win, again")]

    overlays = build_emoji_overlays(
        segments,
        {"playResY": 720, "marginV": 20, "emojiOffsetPx": 0, "emojiSize": 96, "emojiRiseMs": 250},
    )

    assert len(overlays) == 2
    assert overlays[0].y == 700
    assert overlays[0].width == 96
    assert overlays[0].riseMs == 250
    assert overlays[0].playResY == 720


def test_build_emoji_overlays__no_keywords() -> None:
    segments = [Segment(id="s1", start=0.0, end=1.0, text="nothing to see here")]

    assert build_emoji_overlays(segments) == []


@pytest.mark.parametrize(
    ("styles", "baseline", "play_res_y"),
    [
        ({"playResY": "720"}, 670, 720),
        ({"marginV": -40}, 1030, 1080),
        ({"playResY": 0.4, "marginV": "abc"}, 1030, 1080),
        ({"playResY": 200, "marginV": 500}, 150, 200),
    ],
)
def test_build_emoji_overlays__shares_caption_baseline(
    styles: dict[str, Any], baseline: int, play_res_y: int
) -> None:
    """Coerced canvas overrides place the emoji relative to the caption baseline."""
    segments = [Segment(id="s1", start=0.0, end=1.0, text="boom")]

    (overlay,) = build_emoji_overlays(segments, {**styles, "emojiOffsetPx": 0})
    style = resolve_style(TEMPLATE_STYLES["karaoke"], styles)

    assert style.baseline_y == baseline
    assert overlay.y == baseline
    assert overlay.playResY == play_res_y == style.play_res_y
