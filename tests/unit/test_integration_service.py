"""Unit tests for the integration partner workflow."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from caption_pipeline.api.context import ServiceContext
from caption_pipeline.errors import (
    CallbackDeliveryError,
    CaptionConfigurationError,
    ConflictError,
    WorkerRejectedError,
)
from caption_pipeline.integration.models import CAPTION_COLLECTION, VIDEO_COLLECTION
from caption_pipeline.integration.service import normalize_template, sanitize_filename
from caption_pipeline.render.models import JOBS
from caption_pipeline.storage.documents import InMemoryDocumentStore

PARTNER_HOST = "partner.test"
VIDEO_URL = "https://partner.test/videos/v1.mp4"
TRANSCRIPTION_CALLBACK = "https://partner.test/callbacks/transcription"
RENDER_CALLBACK = "https://partner.test/callbacks/render"


def _partner(callback_status: int = 200) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, content=b"video-bytes", headers={"content-type": "video/mp4"})
        return httpx.Response(callback_status)

    return handler


def _callbacks(transport: Any, path: str) -> list[dict[str, Any]]:
    return [
        json.loads(request.content)
        for request in transport.sent_to(PARTNER_HOST)
        if request.method == "POST" and request.url.path == path
    ]


@pytest.fixture
def context(
    build_context: Callable[..., ServiceContext], transport: Any
) -> ServiceContext:
    transport.route(PARTNER_HOST, _partner())
    return build_context()


def _register(context: ServiceContext, **overrides: Any):
    values: dict[str, Any] = {
        "external_video_id": "ext-1",
        "content_id": "content-1",
        "portal_id": "portal-1",
        "video_url": VIDEO_URL,
        "transcription_callback_url": TRANSCRIPTION_CALLBACK,
        "render_callback_url": RENDER_CALLBACK,
        "metadata": {"title": "Launch"},
    }
    values.update(overrides)
    return context.integration.register_video(**values)


def _transcribed(context: ServiceContext, seed_upload: Callable[..., dict[str, Any]]):
    seed_upload()
    _register(context)
    return context.integration.complete_transcription(
        "ext-1", upload_id="upload-1", transcript_id="transcript-1", transcription_job_id="tj-1"
    )


def test_register_video__mirrors_source(context: ServiceContext, transport: Any) -> None:
    video = _register(context)

    assert video.status == "pending_transcription"
    assert video.external_system == "content_scheduler"
    assert video.original_video_url == VIDEO_URL
    assert video.video_storage_path.startswith("uploads/integration/ext-1/")
    assert video.video_storage_path.endswith("-integration-ext-1.mp4")
    assert video.video_url == f"https://cdn.test/{video.video_storage_path}"
    assert video.metadata == {"title": "Launch", "originalVideoUrl": VIDEO_URL}
    assert [entry.status for entry in video.workflow_history] == ["pending_transcription"]
    assert video.workflow_history[0].note == "Video registered"


def test_register_video__refresh_keeps_mirror_and_history(
    context: ServiceContext, transport: Any
) -> None:
    first = _register(context)

    again = _register(context, metadata={"tags": ["launch"]})

    assert again.video_storage_path == first.video_storage_path
    assert again.metadata == {"title": "Launch", "tags": ["launch"], "originalVideoUrl": VIDEO_URL}
    assert len(again.workflow_history) == 1
    assert len([r for r in transport.sent_to(PARTNER_HOST) if r.method == "GET"]) == 1

    _register(context, video_url="https://partner.test/videos/v2.mov")
    assert len([r for r in transport.sent_to(PARTNER_HOST) if r.method == "GET"]) == 2


def test_register_video__mirror_failure_keeps_partner_url(
    build_context: Callable[..., ServiceContext], transport: Any
) -> None:
    transport.route(PARTNER_HOST, lambda request: httpx.Response(404))
    context = build_context()

    video = _register(context)

    assert video.video_url == VIDEO_URL
    assert video.video_storage_path is None


def test_complete_transcription__drafts_captions_and_notifies(
    context: ServiceContext,
    transport: Any,
    seed_upload: Callable[..., dict[str, Any]],
) -> None:
    caption_set = _transcribed(context, seed_upload)

    assert caption_set.version == 1
    assert caption_set.status == "draft"
    assert caption_set.template == "creator-kinetic"
    assert caption_set.transcript_id == "transcript-1"
    assert [segment.text for segment in caption_set.segments] == ["Hello there.", "Money talks!"]

    video = context.integration.get_video("ext-1")
    assert video.status == "awaiting_approval"
    assert [entry.status for entry in video.workflow_history] == [
        "pending_transcription",
        "transcribing",
        "awaiting_approval",
    ]
    assert video.upload_id == "upload-1"
    assert video.caption_set_id == caption_set.id
    assert video.callback_attempts == 1

    [callback] = _callbacks(transport, "/callbacks/transcription")
    assert callback == {
        "contentId": "content-1",
        "portalId": "portal-1",
        "videoId": "ext-1",
        "status": "awaiting_approval",
        "transcriptionJobId": "tj-1",
        "transcriptId": "transcript-1",
        "captionSetId": caption_set.id,
    }


def test_complete_transcription__callback_failure_fails_video(
    build_context: Callable[..., ServiceContext],
    transport: Any,
    seed_upload: Callable[..., dict[str, Any]],
) -> None:
    transport.route(PARTNER_HOST, _partner(callback_status=500))
    context = build_context()

    with pytest.raises(CallbackDeliveryError):
        _transcribed(context, seed_upload)

    video = context.integration.get_video("ext-1")
    assert video.status == "failed"
    assert video.workflow_history[-1].note == "Transcription callback failed"
    assert len(_callbacks(transport, "/callbacks/transcription")) == 3


def test_save_caption_set__bumps_version(
    context: ServiceContext,
    documents: InMemoryDocumentStore,
    seed_upload: Callable[..., dict[str, Any]],
) -> None:
    draft = _transcribed(context, seed_upload)
    edited = [{"id": "c1", "startMs": 0, "endMs": 1500, "text": "Edited line"}]

    context.integration.save_caption_set("ext-1", edited, status="draft")
    saved = context.integration.save_caption_set("ext-1", edited, status="approved", resolution="720p")

    assert saved.id == draft.id
    assert saved.version == 3
    assert saved.status == "approved"
    assert saved.template == "creator-kinetic"
    assert len(documents.find(CAPTION_COLLECTION, {})) == 1

    wire = context.integration.get_caption_set_as_ms("ext-1")
    assert wire["captionSetId"] == draft.id
    assert wire["version"] == 3
    assert wire["resolution"] == "720p"
    assert wire["segments"] == [{"id": "c1", "text": "Edited line", "startMs": 0, "endMs": 1500}]


def test_save_caption_set__creates_set_when_missing(context: ServiceContext) -> None:
    _register(context)

    saved = context.integration.save_caption_set(
        "ext-1", [{"startMs": 100, "endMs": 900, "text": "First"}]
    )

    assert saved.version == 1
    assert saved.transcript_id is None
    assert context.integration.get_video("ext-1").caption_set_id == saved.id


def test_get_caption_set_as_ms__none_without_set(context: ServiceContext) -> None:
    _register(context)

    assert context.integration.get_caption_set_as_ms("ext-1") is None


def test_render_video__requires_linked_upload(context: ServiceContext) -> None:
    _register(context)

    with pytest.raises(ConflictError) as excinfo:
        context.integration.render_video("ext-1")

    assert excinfo.value.code == "upload_not_linked"


def test_render_video__rejects_other_caption_set(
    context: ServiceContext, seed_upload: Callable[..., dict[str, Any]]
) -> None:
    _transcribed(context, seed_upload)

    with pytest.raises(ConflictError) as excinfo:
        context.integration.render_video("ext-1", caption_set_id="someone-elses")

    assert excinfo.value.code == "caption_set_mismatch"


def test_render_video__completion_sends_captioned_callback(
    context: ServiceContext,
    documents: InMemoryDocumentStore,
    transport: Any,
    seed_upload: Callable[..., dict[str, Any]],
) -> None:
    caption_set = _transcribed(context, seed_upload)

    outcome = context.integration.render_video("ext-1", template="unknown-look", resolution="720p")

    job = documents.find_one(JOBS, {"_id": outcome.job_id})
    assert job["payload"]["integrationVideoId"] == "ext-1"
    assert job["payload"]["template"] == "karaoke"
    assert job["payload"]["resolution"] == "720p"
    video = context.integration.get_video("ext-1")
    assert video.status == "rendering"
    assert video.render_job_id == outcome.job_id

    context.orchestrator.complete_render(outcome.job_id, "renders/user-1/final.mp4")

    video = context.integration.get_video("ext-1")
    assert video.status == "captioned"
    assert video.captioned_url == "https://cdn.test/renders/user-1/final.mp4"
    [callback] = _callbacks(transport, "/callbacks/render")
    assert callback["status"] == "captioned"
    assert callback["renderJobId"] == outcome.job_id
    assert callback["renderedVideoUrl"] == "https://cdn.test/renders/user-1/final.mp4"
    assert callback["captionSetId"] == caption_set.id


def test_render_video__worker_rejection_reports_error(
    context: ServiceContext,
    documents: InMemoryDocumentStore,
    transport: Any,
    seed_upload: Callable[..., dict[str, Any]],
) -> None:
    _transcribed(context, seed_upload)
    transport.route("worker.test", lambda request: httpx.Response(500, text="no capacity"))

    with pytest.raises(WorkerRejectedError):
        context.integration.render_video("ext-1")

    video = context.integration.get_video("ext-1")
    assert video.status == "failed"
    [callback] = _callbacks(transport, "/callbacks/render")
    assert callback["status"] == "failed"
    assert callback["error"] == {"message": "Worker rejected job", "code": "RENDER_FAILED"}


def test_render_video__unconfigured_worker_reports_error(
    context: ServiceContext,
    transport: Any,
    seed_upload: Callable[..., dict[str, Any]],
) -> None:
    _transcribed(context, seed_upload)
    context.orchestrator.worker.config.url = ""

    with pytest.raises(CaptionConfigurationError) as excinfo:
        context.integration.render_video("ext-1")

    assert excinfo.value.code == "worker_not_configured"
    video = context.integration.get_video("ext-1")
    assert video.status == "failed"
    [callback] = _callbacks(transport, "/callbacks/render")
    assert callback["status"] == "failed"
    assert callback["error"]["code"] == "RENDER_FAILED"
    assert transport.sent_to("worker.test") == []


def test_render_failure_hook__marks_video_failed(
    context: ServiceContext,
    transport: Any,
    seed_upload: Callable[..., dict[str, Any]],
) -> None:
    _transcribed(context, seed_upload)
    outcome = context.integration.render_video("ext-1")

    context.orchestrator.fail_render(outcome.job_id, "ffmpeg crashed")

    video = context.integration.get_video("ext-1")
    assert video.status == "failed"
    assert video.workflow_history[-1].note == "ffmpeg crashed"
    [callback] = _callbacks(transport, "/callbacks/render")
    assert callback["error"]["code"] == "RENDER_FAILED"


def test_render_progress__noop_until_job_linked(
    context: ServiceContext, documents: InMemoryDocumentStore, transport: Any
) -> None:
    _register(context)

    assert context.integration.send_render_progress_callback("ext-1", 0) is False
    documents.update_one(VIDEO_COLLECTION, {"externalVideoId": "ext-1"}, {"$set": {"renderJobId": "job-9"}})
    assert context.integration.send_render_progress_callback("ext-1", 0) is True
    [callback] = _callbacks(transport, "/callbacks/render")
    assert callback["progress"] == 0
    assert callback["status"] == "rendering"


def test_template_and_filename_helpers() -> None:
    assert normalize_template(None) == "karaoke"
    assert normalize_template("modern") == "minimal"
    assert normalize_template("sparkly") == "karaoke"
    assert sanitize_filename("my clip (final).mp4") == "my_clip__final_.mp4"
