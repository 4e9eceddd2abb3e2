"""REST routes for rendering, export, transcripts and the integration partner."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request
from fastapi.responses import JSONResponse, Response

from caption_pipeline.api.auth import require_integration_token, require_worker_token
from caption_pipeline.api.context import ServiceContext, get_context
from caption_pipeline.api.schemas import (
    CaptionSetUpdateRequest,
    ErrorObject,
    ErrorResponse,
    IntegrationRenderRequest,
    JobCompleteRequest,
    JobFailRequest,
    RegisterVideoRequest,
    TranscriptionLinkRequest,
)
from caption_pipeline.render.export import ExportRequest
from caption_pipeline.render.models import RenderRequest
from caption_pipeline.transcripts.service import TranscriptUpdate
from caption_pipeline.utils.constant import DEFAULT_USER_ID
from caption_pipeline.utils.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api")


def build_error_response(
    *,
    status_code: int,
    message: str,
    error_type: str,
    code: str,
) -> JSONResponse:
    """Create an error response in the standard envelope.

    Args:
        status_code: HTTP status code.
        message: Error message for clients.
        error_type: ``invalid_request_error`` or ``server_error``.
        code: Short machine-readable error code.

    Returns:
        JSON response containing an ``error`` object.
    """
    payload = ErrorResponse(
        error=ErrorObject(message=message, type=error_type, code=code)
    ).model_dump()
    return JSONResponse(status_code=status_code, content=payload)


def _user_id(x_user_id: str | None) -> str:
    return x_user_id or DEFAULT_USER_ID


@router.post("/videos/render")
def trigger_render(
    body: RenderRequest,
    context: ServiceContext = Depends(get_context),
    x_user_id: str | None = Header(default=None),
) -> dict[str, Any]:
    """Build captions for an upload and dispatch a render job."""
    outcome = context.orchestrator.trigger_render(body, _user_id(x_user_id))
    return outcome.to_response()


@router.post("/jobs/{job_id}/complete", response_model=None)
def complete_job(
    job_id: str,
    body: JobCompleteRequest,
    request: Request,
    context: ServiceContext = Depends(get_context),
) -> Response | dict[str, Any]:
    """Worker hook: the render finished and the output is stored."""
    auth_error = require_worker_token(request, job_id, context.worker_config.secret)
    if auth_error is not None:
        return auth_error
    job = context.orchestrator.complete_render(job_id, body.render_path, body.download_url)
    return {"jobId": job_id, "status": job["status"], "result": job.get("result")}


@router.post("/jobs/{job_id}/fail", response_model=None)
def fail_job(
    job_id: str,
    body: JobFailRequest,
    request: Request,
    context: ServiceContext = Depends(get_context),
) -> Response | dict[str, Any]:
    """Worker hook: the render failed."""
    auth_error = require_worker_token(request, job_id, context.worker_config.secret)
    if auth_error is not None:
        return auth_error
    job = context.orchestrator.fail_render(job_id, body.reason)
    return {"jobId": job_id, "status": job["status"]}


@router.post("/export/start")
def start_export(
    body: ExportRequest,
    context: ServiceContext = Depends(get_context),
) -> dict[str, Any]:
    """Render (or reuse) an upload and queue its portal export."""
    return context.exports.start_export(body).to_response()


@router.get("/portal/list")
def list_portals(context: ServiceContext = Depends(get_context)) -> dict[str, Any]:
    return {"portals": [portal.to_dict() for portal in context.exports.list_portals()]}


@router.patch("/transcripts/{transcript_id}")
def update_transcript(
    transcript_id: str,
    body: TranscriptUpdate,
    context: ServiceContext = Depends(get_context),
    x_user_id: str | None = Header(default=None),
) -> dict[str, Any]:
    transcript = context.transcripts.update_transcript(transcript_id, _user_id(x_user_id), body)
    return {"transcript": transcript}


@router.get("/uploads/{upload_id}/render-url")
def get_render_url(
    upload_id: str,
    context: ServiceContext = Depends(get_context),
) -> dict[str, str]:
    return {"signedUrl": context.orchestrator.get_render_url(upload_id)}


# ----------------------------------------------------------------------
# Integration partner
# ----------------------------------------------------------------------


@router.post("/integration/videos", response_model=None)
def register_video(
    body: RegisterVideoRequest,
    request: Request,
    context: ServiceContext = Depends(get_context),
) -> Response | dict[str, Any]:
    """Register (or refresh) a partner video and mirror its source."""
    auth_error = require_integration_token(request, context.integration_config.api_token)
    if auth_error is not None:
        return auth_error
    video = context.integration.register_video(
        external_video_id=body.video_id,
        content_id=body.content_id,
        portal_id=body.portal_id,
        video_url=body.video_url,
        transcription_callback_url=body.callback_urls.transcription,
        render_callback_url=body.callback_urls.render,
        metadata=body.metadata,
    )
    return {"videoId": video.external_video_id, "status": video.status, "videoUrl": video.video_url}


@router.post("/integration/transcription/{video_id}", response_model=None)
def link_transcription(
    video_id: str,
    body: TranscriptionLinkRequest,
    request: Request,
    context: ServiceContext = Depends(get_context),
) -> Response | dict[str, Any]:
    """Attach a finished transcript, draft captions and notify the partner."""
    auth_error = require_integration_token(request, context.integration_config.api_token)
    if auth_error is not None:
        return auth_error
    caption_set = context.integration.complete_transcription(
        video_id,
        upload_id=body.upload_id,
        transcript_id=body.transcript_id,
        transcription_job_id=body.transcription_job_id,
    )
    return {"videoId": video_id, "captionSetId": caption_set.id, "status": "awaiting_approval"}


@router.get("/integration/captions/{video_id}", response_model=None)
def get_captions(
    video_id: str,
    request: Request,
    context: ServiceContext = Depends(get_context),
) -> Response | dict[str, Any]:
    auth_error = require_integration_token(request, context.integration_config.api_token)
    if auth_error is not None:
        return auth_error
    caption_set = context.integration.get_caption_set_as_ms(video_id)
    if caption_set is None:
        return build_error_response(
            status_code=404,
            message="Caption set not found",
            error_type="invalid_request_error",
            code="not_found",
        )
    return caption_set


@router.put("/integration/captions/{video_id}", response_model=None)
def save_captions(
    video_id: str,
    body: CaptionSetUpdateRequest,
    request: Request,
    context: ServiceContext = Depends(get_context),
) -> Response | dict[str, Any]:
    """Save partner-edited captions (milliseconds) as a new version."""
    auth_error = require_integration_token(request, context.integration_config.api_token)
    if auth_error is not None:
        return auth_error
    context.integration.save_caption_set(
        video_id,
        body.segments,
        status="approved" if body.status == "approved" else "draft",
        resolution=body.resolution,
        metadata=body.metadata,
    )
    caption_set = context.integration.get_caption_set_as_ms(video_id)
    if caption_set is None:
        return build_error_response(
            status_code=404,
            message="Caption set not available after save",
            error_type="invalid_request_error",
            code="not_found",
        )
    return caption_set


@router.post("/integration/render/{video_id}", response_model=None)
def render_video(
    video_id: str,
    body: IntegrationRenderRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    context: ServiceContext = Depends(get_context),
) -> Response | dict[str, Any]:
    """Render a partner video's caption set and report progress in the background."""
    auth_error = require_integration_token(request, context.integration_config.api_token)
    if auth_error is not None:
        return auth_error
    outcome = context.integration.render_video(
        video_id,
        template=body.template,
        resolution=body.resolution,
        caption_set_id=body.caption_set_id,
        metadata=body.metadata,
    )
    if not outcome.skipped:
        background_tasks.add_task(context.integration.emit_initial_progress, video_id)
    return outcome.to_response()
