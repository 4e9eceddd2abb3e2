"""Persist edited transcripts with normalized segments."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Annotated, Any

from pydantic import BaseModel, Field, StringConstraints

from caption_pipeline.errors import CaptionPipelineError, NotFoundError
from caption_pipeline.render.locks import utcnow
from caption_pipeline.render.models import TRANSCRIPTS, UPLOADS
from caption_pipeline.segments import RawSegment, normalize_segments
from caption_pipeline.storage.documents import DocumentStore
from caption_pipeline.utils.logging_config import get_logger

logger = get_logger(__name__)


class TranscriptUpdate(BaseModel):
    """Edited transcript text and, optionally, its segments."""

    text: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
    language: str | None = Field(default=None, min_length=2)
    segments: list[RawSegment] | None = None


class TranscriptService:
    def __init__(
        self, documents: DocumentStore, *, clock: Callable[[], datetime] = utcnow
    ) -> None:
        self.documents = documents
        self.clock = clock

    def update_transcript(
        self, transcript_id: str, user_id: str, update: TranscriptUpdate
    ) -> dict[str, Any]:
        """Replace a transcript's text and segments.

        Segments are normalized (or derived from the text when absent) and
        their words flattened into the transcript's ``words`` list. The
        upload's ``latest_transcript_id`` is then pointed at this transcript;
        failure of that second write is only logged.

        Returns:
            ``{id, text, segments, source_language}`` of the stored transcript.

        Raises:
            NotFoundError: If the user has no such transcript.
        """
        transcript = self.documents.find_one(
            TRANSCRIPTS, {"_id": transcript_id, "user_id": user_id}
        )
        if transcript is None:
            raise NotFoundError("Transcript not found")

        text = update.text.strip()
        segments = normalize_segments(update.segments, text)
        words = [word for segment in segments for word in (segment.words or [])]
        language = update.language or transcript.get("source_language")

        matched = self.documents.update_one(
            TRANSCRIPTS,
            {"_id": transcript_id},
            {
                "$set": {
                    "text": text,
                    "source_language": language,
                    "segments": [segment.model_dump(exclude_none=True) for segment in segments],
                    "words": [word.model_dump() for word in words],
                    "updated_at": self.clock(),
                }
            },
        )
        if not matched:
            raise CaptionPipelineError("Could not update transcript", code="update_failed")

        upload_id = transcript.get("upload_id")
        if upload_id:
            try:
                self.documents.update_one(
                    UPLOADS,
                    {"_id": upload_id},
                    {"$set": {"latest_transcript_id": transcript_id, "updated_at": self.clock()}},
                )
            except Exception as exc:
                logger.warning(
                    "Failed to update uploads.latest_transcript_id for %s: %s", upload_id, exc
                )

        logger.info("Updated transcript %s (%d segments)", transcript_id, len(segments))
        return {
            "id": transcript_id,
            "text": text,
            "segments": [segment.model_dump(exclude_none=True) for segment in segments],
            "source_language": language,
        }
