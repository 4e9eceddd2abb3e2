"""Decorative overlays rendered alongside captions."""

from caption_pipeline.overlays.emoji import Overlay, build_emoji_overlays

__all__ = ["Overlay", "build_emoji_overlays"]
