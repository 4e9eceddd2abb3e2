"""Segment and word models plus normalization helpers."""

from caption_pipeline.segments.models import (
    MsSegment,
    MsWord,
    RawSegment,
    RawWord,
    Segment,
    Word,
)
from caption_pipeline.segments.normalize import (
    distribute_words_evenly,
    ms_to_seconds,
    normalize_segments,
    normalize_segments_from_ms,
    rebuild_karaoke_words,
    sanitize_client_segments,
    seconds_to_ms,
    segments_from_text,
    segments_to_ms_payload,
)

__all__ = [
    "MsSegment",
    "MsWord",
    "RawSegment",
    "RawWord",
    "Segment",
    "Word",
    "distribute_words_evenly",
    "ms_to_seconds",
    "normalize_segments",
    "normalize_segments_from_ms",
    "rebuild_karaoke_words",
    "sanitize_client_segments",
    "seconds_to_ms",
    "segments_from_text",
    "segments_to_ms_payload",
]
