"""Unit tests for transcript edits."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

import pytest

from caption_pipeline.errors import NotFoundError
from caption_pipeline.render.models import TRANSCRIPTS, UPLOADS
from caption_pipeline.storage.documents import InMemoryDocumentStore
from caption_pipeline.transcripts import TranscriptService, TranscriptUpdate


def test_update_transcript__normalizes_and_links_upload(
    documents: InMemoryDocumentStore,
    seed_upload: Callable[..., dict[str, Any]],
    fixed_clock: Callable[[], datetime],
) -> None:
    seed_upload()
    service = TranscriptService(documents, clock=fixed_clock)

    result = service.update_transcript(
        "transcript-1",
        "user-1",
        TranscriptUpdate(
            text="  Brand new words  ",
            language="en",
            segments=[{"start": 0.0, "end": 2.0, "text": "Brand new words"}],
        ),
    )

    assert result["id"] == "transcript-1"
    assert result["text"] == "Brand new words"
    assert result["source_language"] == "en"
    assert [segment["id"] for segment in result["segments"]] == ["segment_0"]

    stored = documents.find_one(TRANSCRIPTS, {"_id": "transcript-1"})
    assert [word["text"] for word in stored["words"]] == ["Brand", "new", "words"]
    assert stored["words"][-1]["end"] == 2.0
    assert stored["updated_at"] == fixed_clock()
    assert documents.find_one(UPLOADS, {"_id": "upload-1"})["latest_transcript_id"] == "transcript-1"


def test_update_transcript__derives_segments_from_text(
    documents: InMemoryDocumentStore,
    seed_upload: Callable[..., dict[str, Any]],
) -> None:
    seed_upload()
    service = TranscriptService(documents)

    result = service.update_transcript(
        "transcript-1", "user-1", TranscriptUpdate(text="One. Two!")
    )

    assert [segment["text"] for segment in result["segments"]] == ["One.", "Two!"]
    assert result["source_language"] is None


def test_update_transcript__other_users_transcript(
    documents: InMemoryDocumentStore,
    seed_upload: Callable[..., dict[str, Any]],
) -> None:
    seed_upload()
    service = TranscriptService(documents)

    with pytest.raises(NotFoundError):
        service.update_transcript("transcript-1", "intruder", TranscriptUpdate(text="hijack"))


def test_transcript_update__validation() -> None:
    with pytest.raises(ValueError):
        TranscriptUpdate(text="")
    with pytest.raises(ValueError):
        TranscriptUpdate(text="ok", language="e")
    with pytest.raises(ValueError):
        TranscriptUpdate(text="   \n\t")


class _UploadsUnavailableStore(InMemoryDocumentStore):
    def update_one(
        self, collection: str, query: Mapping[str, Any], update: Mapping[str, Any]
    ) -> int:
        if collection == UPLOADS:
            raise RuntimeError("uploads collection unavailable")
        return super().update_one(collection, query, update)


def test_update_transcript__upload_link_failure_is_logged(
    seed_upload: Callable[..., dict[str, Any]],
    documents: InMemoryDocumentStore,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """The transcript is still saved when the upload pointer cannot be written."""
    seed_upload()
    store = _UploadsUnavailableStore()
    store.insert_one(TRANSCRIPTS, documents.find_one(TRANSCRIPTS, {"_id": "transcript-1"}))
    store.insert_one(UPLOADS, documents.find_one(UPLOADS, {"_id": "upload-1"}))
    service = TranscriptService(store)

    with caplog.at_level("WARNING", logger="caption_pipeline.transcripts.service"):
        result = service.update_transcript("transcript-1", "user-1", TranscriptUpdate(text="Saved anyway"))

    assert result["text"] == "Saved anyway"
    assert store.find_one(TRANSCRIPTS, {"_id": "transcript-1"})["text"] == "Saved anyway"
    assert "latest_transcript_id" not in store.find_one(UPLOADS, {"_id": "upload-1"})
    assert "Failed to update uploads.latest_transcript_id" in caplog.text
