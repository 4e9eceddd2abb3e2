"""Common data models for time-coded caption segments.

This module defines pydantic models that are shared across normalization,
caption building, overlay generation and the integration layer. Canonical
models use seconds; the ``Ms*`` models mirror the millisecond payloads
exchanged with the integration partner.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "Word",
    "Segment",
    "RawWord",
    "RawSegment",
    "MsWord",
    "MsSegment",
]


class Word(BaseModel):
    """Represents a single word with timing information."""

    text: str = Field(..., description="The word as displayed.")
    start: float = Field(..., description="Start time of the word in seconds.")
    end: float = Field(..., description="End time of the word in seconds.")


class Segment(BaseModel):
    """A caption segment, optionally carrying per-word timings."""

    id: str = Field(..., description="Unique segment identifier.")
    start: float = Field(..., description="Segment start time (seconds).")
    end: float = Field(..., description="Segment end time (seconds).")
    text: str = Field(..., description="Segment text.")
    words: list[Word] | None = Field(None, description="Ordered words in the segment.")


class RawWord(BaseModel):
    """Loosely-typed word as supplied by editors or stored transcripts."""

    text: str | None = None
    start: float | None = None
    end: float | None = None


class RawSegment(BaseModel):
    """Loosely-typed segment as supplied by editors or stored transcripts."""

    id: str | int | None = None
    start: float | None = None
    end: float | None = None
    text: str | None = None
    words: list[RawWord] | None = None


class MsWord(BaseModel):
    """Word timing expressed in milliseconds."""

    model_config = ConfigDict(populate_by_name=True)

    text: str | None = None
    start_ms: float | None = Field(None, alias="startMs")
    end_ms: float | None = Field(None, alias="endMs")


class MsSegment(BaseModel):
    """Segment timing expressed in milliseconds."""

    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    start_ms: float | None = Field(None, alias="startMs")
    end_ms: float | None = Field(None, alias="endMs")
    text: str | None = None
    words: list[MsWord] | None = None
