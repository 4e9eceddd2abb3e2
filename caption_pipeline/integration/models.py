"""Documents and callback payloads of the integration partner workflow."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from caption_pipeline.segments.models import Segment

VIDEO_COLLECTION = "integration_videos"
CAPTION_COLLECTION = "integration_captions"
EXTERNAL_SYSTEM = "content_scheduler"


class WorkflowStatus(str, enum.Enum):  # noqa: UP042
    """Lifecycle of a partner video.

    ``received -> pending_transcription -> transcribing -> awaiting_approval
    -> approved_rendering -> rendering -> captioned``; ``failed`` is
    reachable from every state.
    """

    RECEIVED = "received"
    PENDING_TRANSCRIPTION = "pending_transcription"
    TRANSCRIBING = "transcribing"
    AWAITING_APPROVAL = "awaiting_approval"
    APPROVED_RENDERING = "approved_rendering"
    RENDERING = "rendering"
    CAPTIONED = "captioned"
    FAILED = "failed"


CaptionSetStatus = Literal["draft", "approved"]
CallbackKind = Literal["transcription", "render"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, use_enum_values=True)


class _Document(_CamelModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = Field(default=None, alias="_id")


class HistoryEntry(BaseModel):
    status: WorkflowStatus
    at: datetime
    note: str | None = None


class IntegrationVideo(_Document):
    """A video registered by the partner, keyed by ``externalVideoId``."""

    external_video_id: str
    external_system: str = EXTERNAL_SYSTEM
    content_id: str
    portal_id: str

    upload_id: str | None = None
    transcript_id: str | None = None
    transcription_job_id: str | None = None
    render_job_id: str | None = None
    caption_set_id: str | None = None

    video_url: str
    video_storage_path: str | None = Field(default=None, alias="video_storage_path")
    original_video_url: str | None = None
    captioned_url: str | None = None

    transcription_callback_url: str
    render_callback_url: str
    callback_attempts: int = 0
    last_callback_at: datetime | None = None

    status: WorkflowStatus
    workflow_history: list[HistoryEntry] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    render_options: dict[str, Any] | None = None

    created_at: datetime
    updated_at: datetime


class CaptionSetDocument(_Document):
    """Versioned caption segments for one partner video."""

    video_id: str
    content_id: str
    portal_id: str
    transcript_id: str | None = None
    segments: list[Segment]
    status: CaptionSetStatus = "draft"
    version: int = 1
    template: str | None = None
    resolution: str | None = None
    metadata: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime


class CallbackError(_CamelModel):
    message: str
    code: str | None = None


class CallbackPayload(_CamelModel):
    """Body POSTed to partner callback URLs."""

    content_id: str
    portal_id: str
    video_id: str
    status: WorkflowStatus
    transcription_job_id: str | None = None
    transcript_id: str | None = None
    render_job_id: str | None = None
    progress: int | float | None = None
    caption_set_id: str | None = None
    rendered_video_url: str | None = None
    error: CallbackError | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
