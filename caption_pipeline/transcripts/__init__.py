"""Transcript editing."""

from caption_pipeline.transcripts.service import TranscriptService, TranscriptUpdate

__all__ = ["TranscriptService", "TranscriptUpdate"]
