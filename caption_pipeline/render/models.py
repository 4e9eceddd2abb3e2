"""Render job states, request schema and result objects."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from caption_pipeline.segments.models import RawSegment, Segment
from caption_pipeline.utils.constant import DEFAULT_RESOLUTION, DEFAULT_TEMPLATE

UPLOADS = "uploads"
TRANSCRIPTS = "transcripts"
TRANSLATIONS = "translations"
JOBS = "jobs"
EXPORT_JOBS = "render_jobs"
RENDER_LOCKS = "render_locks"


class RenderJobStatus(str, enum.Enum):  # noqa: UP042
    """Status of a render job dispatched to the worker.

    Attributes:
        PENDING_RENDER: Row inserted, nothing sent yet.
        QUEUED: Caption stored and worker accepted the job.
        RENDERED: Render asset available (fresh or reused).
        FAILED: Storage or worker failure; needs manual intervention.
    """

    PENDING_RENDER = "pending_render"
    QUEUED = "queued"
    RENDERED = "rendered"
    FAILED = "failed"


class ExportJobStatus(str, enum.Enum):  # noqa: UP042
    """Status of a portal export request.

    Attributes:
        PENDING_RENDER: Row inserted before the render was triggered.
        QUEUED: Waiting for the worker to finish the render.
        RENDERED: Render available, export not delivered yet.
        EXPORTED: Portal accepted the export.
        EXPORT_FAILED: Delivery attempts exhausted; ``nextAttemptAt`` is set.
        TRIGGER_FAILED: The render could not be triggered or linked.
        FAILED: The render itself failed.
    """

    PENDING_RENDER = "pending_render"
    QUEUED = "queued"
    RENDERED = "rendered"
    EXPORTED = "exported"
    EXPORT_FAILED = "export_failed"
    TRIGGER_FAILED = "trigger_failed"
    FAILED = "failed"


class UploadStatus(str, enum.Enum):  # noqa: UP042
    """Upload status values written by the orchestrator."""

    RENDERING = "rendering"
    RENDERED = "rendered"
    RENDER_FAILED = "render_failed"


CaptionSourceKind = Literal["segments", "translation", "transcript", "latest_transcript"]


class RenderRequest(BaseModel):
    """Validated render request.

    The caption source is chosen in priority order: inline ``segments``,
    ``translationId``, ``transcriptId``, then the latest transcript of the
    upload.
    """

    model_config = ConfigDict(populate_by_name=True)

    upload_id: str = Field(..., alias="uploadId", min_length=1)
    template: str = Field(default=DEFAULT_TEMPLATE)
    resolution: str = Field(default=DEFAULT_RESOLUTION)
    segments: list[RawSegment] | None = None
    translation_id: str | None = Field(default=None, alias="translationId")
    transcript_id: str | None = Field(default=None, alias="transcriptId")
    custom_styles: dict[str, Any] | None = Field(default=None, alias="customStyles")

    @property
    def source_kind(self) -> CaptionSourceKind:
        """Which caption source this request resolves to."""
        if self.segments:
            return "segments"
        if self.translation_id:
            return "translation"
        if self.transcript_id:
            return "transcript"
        return "latest_transcript"


@dataclass
class CaptionSource:
    """Segments chosen for a render plus their provenance."""

    segments: list[Segment]
    transcript_id: str | None = None
    translation_id: str | None = None
    segments_provided: bool = False


@dataclass
class RenderOutcome:
    """Result of triggering a render.

    Attributes:
        job_id: Render job id.
        upload_id: Upload the render belongs to.
        status: Job status after the request.
        skipped: ``True`` when an existing render with identical captions was reused.
        caption_hash: SHA-256 of the caption file.
        caption_path: Stored caption object key (empty when skipped).
        video_path: Source video object key.
        output_path: Render output object key.
        caption_format: ``ass`` or ``srt``.
        overlays: Overlay descriptors sent to the worker.
    """

    job_id: str
    upload_id: str
    status: RenderJobStatus
    skipped: bool
    caption_hash: str
    caption_path: str
    video_path: str
    output_path: str
    caption_format: str
    overlays: list[dict[str, Any]] = field(default_factory=list)

    def to_response(self) -> dict[str, Any]:
        """Serialize with the API's camelCase field names."""
        return {
            "jobId": self.job_id,
            "uploadId": self.upload_id,
            "captionPath": self.caption_path,
            "videoPath": self.video_path,
            "outputPath": self.output_path,
            "status": self.status.value,
            "skipped": self.skipped,
            "captionHash": self.caption_hash,
        }
