"""Canonicalize raw caption input into the internal seconds-based time model.

Three kinds of input reach the pipeline:

* segments edited by a user (possibly missing ids, ends or words),
* plain transcript text with no timing at all,
* millisecond payloads from the integration partner.

All of them are turned into :class:`~caption_pipeline.segments.models.Segment`
lists whose invariants the caption builder relies on: ``end > start``, unique
string ids in input order, and word timings that stay inside their segment.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from caption_pipeline.segments.models import (
    MsSegment,
    MsWord,
    RawSegment,
    RawWord,
    Segment,
    Word,
)

__all__ = [
    "MIN_WORD_DURATION_SEC",
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

MS_IN_SECOND = 1000
MIN_WORD_DURATION_SEC = 0.06
MIN_SEGMENT_MS = 200
MIN_WORD_MS = 60
DEFAULT_SEGMENT_MS = 800
DEFAULT_WORD_MS = 120

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


def _finite(value: Any) -> float | None:
    """Return ``value`` as float when it is a finite number, else ``None``."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _coerce(items: Iterable[Any], model: type) -> list[Any]:
    return [item if isinstance(item, model) else model.model_validate(item) for item in items]


def _unique_ids(candidates: Sequence[str]) -> list[str]:
    """De-duplicate ids deterministically by suffixing repeats with ``_<n>``."""
    seen: dict[str, int] = {}
    taken = set(candidates)
    result: list[str] = []
    for candidate in candidates:
        if candidate not in seen:
            seen[candidate] = 0
            result.append(candidate)
            continue
        suffix = seen[candidate]
        while True:
            suffix += 1
            renamed = f"{candidate}_{suffix}"
            if renamed not in taken:
                break
        seen[candidate] = suffix
        taken.add(renamed)
        result.append(renamed)
    return result


def distribute_words_evenly(text: str, start: float, end: float) -> list[Word]:
    """Split ``text`` on whitespace and spread the tokens across ``[start, end]``.

    Words are contiguous: each word starts where the previous one ended and
    the last word ends exactly at ``end``.

    Args:
        text: Segment text.
        start: Segment start in seconds.
        end: Segment end in seconds.

    Returns:
        Synthesized words (empty when ``text`` has no tokens).
    """
    tokens = text.split()
    if not tokens:
        return []

    if end > start:
        duration = end - start
        final_end = end
    else:
        duration = max(len(tokens) * 0.25, 0.5)
        final_end = start + duration
    per_word = duration / len(tokens)

    words: list[Word] = []
    cursor = start
    for index, token in enumerate(tokens):
        word_end = final_end if index == len(tokens) - 1 else start + per_word * (index + 1)
        words.append(Word(text=token, start=cursor, end=word_end))
        cursor = word_end
    return words


def _clip_words(raw_words: Sequence[RawWord], start: float, end: float) -> list[Word]:
    """Keep supplied word timings but force them inside the segment window."""
    words: list[Word] = []
    for index, raw in enumerate(raw_words):
        word_start = _finite(raw.start)
        if word_start is None:
            word_start = start + index * 0.2
        word_start = min(max(word_start, start), end)
        word_end = _finite(raw.end)
        if word_end is None or word_end < word_start + MIN_WORD_DURATION_SEC:
            word_end = word_start + MIN_WORD_DURATION_SEC
        words.append(
            Word(text=(raw.text or "").strip(), start=word_start, end=min(word_end, end))
        )
    return words


def segments_from_text(text: str) -> list[RawSegment]:
    """Derive untimed segments from free text, one per sentence.

    Sentences are split on ``.``, ``!`` or ``?`` followed by whitespace.
    Each sentence ``i`` starts at ``i * 2`` seconds and lasts
    ``max(len / 8, 1.5)`` seconds.

    Args:
        text: Transcript text.

    Returns:
        Raw segments ready for :func:`normalize_segments`.
    """
    cleaned = text.strip()
    if not cleaned:
        return [RawSegment(id="segment_0", start=0.0, end=2.0, text="")]

    sentences = [part.strip() for part in _SENTENCE_SPLIT.split(cleaned) if part.strip()]
    return [
        RawSegment(
            id=f"segment_{index}",
            start=index * 2.0,
            end=index * 2.0 + max(len(sentence) / 8, 1.5),
            text=sentence,
        )
        for index, sentence in enumerate(sentences)
    ]


def normalize_segments(
    raw_segments: Sequence[RawSegment | Mapping[str, Any]] | None,
    fallback_text: str = "",
) -> list[Segment]:
    """Normalize edited segments, or derive them from ``fallback_text``.

    Args:
        raw_segments: Segments as edited by a client; may be empty.
        fallback_text: Transcript text used when no segments are supplied.

    Returns:
        Canonical segments in input order.
    """
    source = _coerce(raw_segments or [], RawSegment) or segments_from_text(fallback_text)

    ids = _unique_ids([
        str(raw.id) if raw.id not in (None, "") else f"segment_{index}"
        for index, raw in enumerate(source)
    ])

    segments: list[Segment] = []
    for index, raw in enumerate(source):
        start = _finite(raw.start)
        if start is None:
            start = index * 2.0
        text = (raw.text or "").strip()
        provided_end = _finite(raw.end)
        if provided_end is not None and provided_end > start:
            end = provided_end
        else:
            end = start + max(len(text) / 10, 1.2)

        if raw.words:
            words = _clip_words(raw.words, start, end)
        else:
            words = distribute_words_evenly(text, start, end)

        segments.append(
            Segment(id=ids[index], start=start, end=end, text=text, words=words or None)
        )
    return segments


def sanitize_client_segments(raw_segments: Sequence[RawSegment | Mapping[str, Any]]) -> list[Segment]:
    """Coerce render-request segments into canonical form without resynthesizing words.

    Missing starts fall back to ``index * 2``; non-increasing ends become
    ``start + 0.2``. Supplied words get the same treatment relative to their
    own start.
    """
    source = _coerce(raw_segments, RawSegment)
    ids = _unique_ids([
        str(raw.id) if raw.id not in (None, "") else f"segment_{index}"
        for index, raw in enumerate(source)
    ])

    segments: list[Segment] = []
    for index, raw in enumerate(source):
        start = _finite(raw.start)
        if start is None:
            start = index * 2.0
        end = _finite(raw.end)
        if end is None or end <= start:
            end = start + 0.2

        words: list[Word] | None = None
        if raw.words is not None:
            words = []
            for word_index, raw_word in enumerate(raw.words):
                word_start = _finite(raw_word.start)
                if word_start is None:
                    word_start = start + word_index * 0.2
                word_end = _finite(raw_word.end)
                if word_end is None or word_end <= word_start:
                    word_end = word_start + 0.2
                words.append(
                    Word(text=(raw_word.text or "").strip(), start=word_start, end=word_end)
                )

        segments.append(
            Segment(id=ids[index], start=start, end=end, text=(raw.text or "").strip(), words=words)
        )
    return segments


def rebuild_karaoke_words(segments: Sequence[Segment]) -> list[Segment]:
    """Re-derive per-word timing from each segment's text for karaoke rendering.

    Supplied words are ignored because editors rarely keep them in sync with
    edited text.
    """
    return [
        segment.model_copy(
            update={"words": distribute_words_evenly(segment.text, segment.start, segment.end)}
        )
        for segment in segments
    ]


def ms_to_seconds(ms: float) -> float:
    """Convert milliseconds to seconds rounded to 3 decimals (never negative)."""
    return max(0.0, round(ms / MS_IN_SECOND, 3))


def seconds_to_ms(seconds: float) -> int:
    """Convert seconds to the nearest whole millisecond (never negative)."""
    return max(0, math.floor(seconds * MS_IN_SECOND + 0.5))


def normalize_segments_from_ms(
    segments: Sequence[MsSegment | Mapping[str, Any]],
) -> list[Segment]:
    """Convert a millisecond payload into canonical seconds-based segments.

    Clamps: ``startMs >= 0``, ``endMs >= startMs + 200``, word
    ``endMs >= wordStartMs + 60``; word windows are clipped to their segment.
    """
    source = _coerce(segments, MsSegment)
    ids = _unique_ids([raw.id or f"segment_{index}" for index, raw in enumerate(source)])

    normalized: list[Segment] = []
    for index, raw in enumerate(source):
        safe_start = _finite(raw.start_ms)
        if safe_start is None:
            safe_start = float(index * 2000)
        raw_end = _finite(raw.end_ms)
        if raw_end is None:
            raw_end = safe_start + DEFAULT_SEGMENT_MS
        start_ms = max(0.0, min(safe_start, raw_end))
        end_ms = max(start_ms + MIN_SEGMENT_MS, raw_end)

        words: list[Word] = []
        for word_index, raw_word in enumerate(_coerce(raw.words or [], MsWord)):
            word_start = _finite(raw_word.start_ms)
            if word_start is None:
                word_start = start_ms + word_index * DEFAULT_WORD_MS
            raw_word_end = _finite(raw_word.end_ms)
            if raw_word_end is None:
                raw_word_end = word_start + DEFAULT_WORD_MS
            word_end = max(word_start + MIN_WORD_MS, raw_word_end)
            clipped_start = min(max(start_ms, word_start), end_ms)
            words.append(
                Word(
                    text=(raw_word.text or "").strip(),
                    start=ms_to_seconds(clipped_start),
                    end=ms_to_seconds(max(clipped_start, min(end_ms, word_end))),
                )
            )

        normalized.append(
            Segment(
                id=ids[index],
                start=ms_to_seconds(start_ms),
                end=ms_to_seconds(end_ms),
                text=(raw.text or "").strip(),
                words=words or None,
            )
        )
    return normalized


def segments_to_ms_payload(segments: Sequence[Segment]) -> list[dict[str, Any]]:
    """Render canonical segments as the integration partner's millisecond payload."""
    payload: list[dict[str, Any]] = []
    for index, segment in enumerate(segments):
        entry: dict[str, Any] = {
            "id": segment.id or f"segment_{index}",
            "text": segment.text,
            "startMs": seconds_to_ms(segment.start),
            "endMs": seconds_to_ms(segment.end),
        }
        if segment.words is not None:
            entry["words"] = [
                {
                    "text": word.text,
                    "startMs": seconds_to_ms(word.start),
                    "endMs": seconds_to_ms(word.end),
                }
                for word in segment.words
            ]
        payload.append(entry)
    return payload
