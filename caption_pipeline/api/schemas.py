"""Request and response schemas for the REST API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from caption_pipeline.segments.models import MsSegment


class _CamelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ErrorObject(BaseModel):
    """Error details of a failed request."""

    message: str
    type: str
    code: str


class ErrorResponse(BaseModel):
    """Top-level error response wrapper."""

    error: ErrorObject


class JobCompleteRequest(_CamelRequest):
    """Worker report of a finished render."""

    render_path: str = Field(..., alias="renderPath", min_length=1)
    download_url: str | None = Field(default=None, alias="downloadUrl")


class JobFailRequest(BaseModel):
    """Worker report of a failed render."""

    reason: str = ""


class CallbackUrls(BaseModel):
    transcription: str = Field(..., min_length=1)
    render: str = Field(..., min_length=1)


class RegisterVideoRequest(_CamelRequest):
    """Partner request to track a video."""

    video_id: str = Field(..., alias="videoId", min_length=1)
    content_id: str = Field(..., alias="contentId", min_length=1)
    portal_id: str = Field(..., alias="portalId", min_length=1)
    video_url: str = Field(..., alias="videoUrl", min_length=1)
    callback_urls: CallbackUrls = Field(..., alias="callbackUrls")
    metadata: dict[str, Any] | None = None


class TranscriptionLinkRequest(_CamelRequest):
    """Links a finished transcript to a partner video."""

    upload_id: str = Field(..., alias="uploadId", min_length=1)
    transcript_id: str = Field(..., alias="transcriptId", min_length=1)
    transcription_job_id: str | None = Field(default=None, alias="transcriptionJobId")


class CaptionSetUpdateRequest(BaseModel):
    """Partner edit of a caption set, in milliseconds."""

    segments: list[MsSegment] = Field(..., min_length=1)
    status: str | None = None
    template: str | None = None
    resolution: str | None = None
    metadata: dict[str, Any] | None = None


class IntegrationRenderRequest(_CamelRequest):
    """Partner request to render the approved caption set."""

    template: str | None = None
    resolution: str | None = None
    caption_set_id: str | None = Field(default=None, alias="captionSetId")
    metadata: dict[str, Any] | None = None
