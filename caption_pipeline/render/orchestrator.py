"""Render job lifecycle: caption source resolution, reuse, dispatch and completion.

A render request moves a job through ``pending_render -> queued -> rendered``
or ends in ``failed``. The job row is inserted before any external call, so
every later failure is recorded on it before the error reaches the caller.
Renders whose caption content hash matches the upload's last render reuse
the existing asset without contacting the worker.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

import httpx

from caption_pipeline.captions import build_caption_file, resolve_template_name
from caption_pipeline.config import RENDER_RESOLUTIONS, RenderConfig, normalize_resolution
from caption_pipeline.errors import (
    CaptionConfigurationError,
    CaptionPipelineError,
    NotFoundError,
    StorageError,
    WorkerRejectedError,
    WorkerUnreachableError,
)
from caption_pipeline.overlays import build_emoji_overlays
from caption_pipeline.render.locks import RenderLock, utcnow
from caption_pipeline.render.models import (
    JOBS,
    TRANSCRIPTS,
    TRANSLATIONS,
    UPLOADS,
    CaptionSource,
    RenderJobStatus,
    RenderOutcome,
    RenderRequest,
    UploadStatus,
)
from caption_pipeline.render.worker import WorkerClient
from caption_pipeline.segments import (
    Segment,
    normalize_segments,
    rebuild_karaoke_words,
    sanitize_client_segments,
)
from caption_pipeline.storage.documents import DESCENDING, DocumentStore
from caption_pipeline.storage.objects import ObjectStorage
from caption_pipeline.utils.constant import DEFAULT_USER_ID
from caption_pipeline.utils.logging_config import get_logger

logger = get_logger(__name__)

CompletionHook = Callable[[dict[str, Any]], None]
FailureHook = Callable[[dict[str, Any], str], None]


def _scoped(query: dict[str, Any], user_id: str | None) -> dict[str, Any]:
    if user_id is not None:
        query["user_id"] = user_id
    return query


def _stored_segments(document: Mapping[str, Any]) -> list[Segment]:
    return normalize_segments(document.get("segments") or [], document.get("text") or "")


class RenderOrchestrator:
    """Coordinates caption building, storage and the rendering worker.

    Other services subscribe to job completion and failure through
    :meth:`add_completion_hook` and :meth:`add_failure_hook`; hook errors
    are logged and never undo the job transition.
    """

    def __init__(
        self,
        documents: DocumentStore,
        objects: ObjectStorage,
        worker: WorkerClient,
        config: RenderConfig | None = None,
        *,
        http_client: httpx.Client | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.documents = documents
        self.objects = objects
        self.worker = worker
        self.config = config or RenderConfig()
        self.http = http_client
        self.clock = clock
        self.locks = RenderLock(documents, ttl_sec=self.config.lock_ttl_sec, clock=clock)
        self._completion_hooks: list[CompletionHook] = []
        self._failure_hooks: list[FailureHook] = []

    def add_completion_hook(self, hook: CompletionHook) -> None:
        self._completion_hooks.append(hook)

    def add_failure_hook(self, hook: FailureHook) -> None:
        self._failure_hooks.append(hook)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def load_upload(self, upload_id: str, user_id: str | None = None) -> dict[str, Any]:
        """Fetch an upload, optionally restricted to its owner.

        Raises:
            NotFoundError: If no matching upload exists.
        """
        upload = self.documents.find_one(UPLOADS, _scoped({"_id": upload_id}, user_id))
        if upload is None:
            logger.info("Upload not found: id=%s user=%s", upload_id, user_id)
            raise NotFoundError("Upload not found")
        return upload

    def resolve_caption_source(
        self, upload_id: str, user_id: str | None, request: RenderRequest
    ) -> CaptionSource:
        """Pick the segments to render.

        Priority: inline segments, then ``translationId`` (whose transcript
        must belong to ``upload_id``), then ``transcriptId``, then the
        newest transcript of the upload.

        Raises:
            NotFoundError: If the selected source does not exist.
        """
        kind = request.source_kind

        if kind == "segments":
            segments = sanitize_client_segments(request.segments or [])
            if resolve_template_name(request.template) == "karaoke":
                segments = rebuild_karaoke_words(segments)
            return CaptionSource(
                segments=segments,
                transcript_id=request.transcript_id,
                translation_id=request.translation_id,
                segments_provided=True,
            )

        if kind == "translation":
            translation = self.documents.find_one(
                TRANSLATIONS, _scoped({"_id": request.translation_id}, user_id)
            )
            if translation is None:
                raise NotFoundError("Translation not found")
            transcript = self.documents.find_one(
                TRANSCRIPTS, {"_id": translation.get("transcript_id"), "upload_id": upload_id}
            )
            if transcript is None:
                raise NotFoundError("Translation not found for this upload")
            return CaptionSource(
                segments=_stored_segments(translation),
                transcript_id=str(translation.get("transcript_id")),
                translation_id=translation["_id"],
            )

        if kind == "transcript":
            transcript = self.documents.find_one(
                TRANSCRIPTS, _scoped({"_id": request.transcript_id}, user_id)
            )
        else:
            latest = self.documents.find(
                TRANSCRIPTS,
                _scoped({"upload_id": upload_id}, user_id),
                sort=[("created_at", DESCENDING)],
                limit=1,
            )
            transcript = latest[0] if latest else None

        if transcript is None:
            raise NotFoundError("Transcript not found")
        return CaptionSource(segments=_stored_segments(transcript), transcript_id=transcript["_id"])

    # ------------------------------------------------------------------
    # Triggering
    # ------------------------------------------------------------------

    def trigger_render(self, request: RenderRequest, user_id: str | None) -> RenderOutcome:
        """Validate a render request and dispatch it.

        Args:
            request: Parsed render request.
            user_id: Requesting user; ``None`` skips ownership checks and
                resolves transcripts as the upload's owner.

        Returns:
            The outcome, with ``skipped=True`` when an existing render was reused.
        """
        resolve_template_name(request.template)
        upload = self.load_upload(request.upload_id, user_id)
        owner = user_id if user_id is not None else upload.get("user_id")
        source = self.resolve_caption_source(str(upload["_id"]), owner, request)
        return self.render_segments(
            upload,
            source,
            template=request.template,
            resolution=request.resolution,
            custom_styles=request.custom_styles,
        )

    def _final_styles(
        self, resolution: str, custom_styles: Mapping[str, Any] | None
    ) -> dict[str, Any]:
        canvas = RENDER_RESOLUTIONS[resolution]
        styles = dict(custom_styles or {})
        if styles.get("playResX") is None:
            styles["playResX"] = canvas.width
        if styles.get("playResY") is None:
            styles["playResY"] = canvas.height
        return styles

    def _fail_job(self, job_id: str, error: str, **extra: Any) -> None:
        self.documents.update_one(
            JOBS,
            {"_id": job_id},
            {
                "$set": {
                    "status": RenderJobStatus.FAILED.value,
                    "error": error,
                    "updated_at": self.clock(),
                    **extra,
                }
            },
        )

    def render_segments(
        self,
        upload: Mapping[str, Any],
        source: CaptionSource,
        *,
        template: str,
        resolution: str | None,
        custom_styles: Mapping[str, Any] | None = None,
        integration_video_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> RenderOutcome:
        """Build captions for ``source`` and run the job lifecycle.

        Raises:
            CaptionConfigurationError: Unknown template or unconfigured worker.
            ConflictError: Another render for the upload is in flight.
            StorageError: The caption file could not be stored.
            WorkerUnreachableError: The worker could not be contacted.
            WorkerRejectedError: The worker refused the job.
        """
        template_name = resolve_template_name(template)
        resolution_name = normalize_resolution(resolution, self.config.default_resolution)
        styles = self._final_styles(resolution_name, custom_styles)

        caption = build_caption_file(template_name, source.segments, styles)
        overlays = [overlay.model_dump() for overlay in build_emoji_overlays(source.segments, styles)]
        digest = caption.sha256
        logger.info("Generated %d emoji overlays", len(overlays))

        upload_id = str(upload["_id"])
        owner = upload.get("user_id") or DEFAULT_USER_ID
        payload: dict[str, Any] = {
            "template": template_name,
            "resolution": resolution_name,
            "transcriptId": source.transcript_id,
            "translationId": source.translation_id,
            "videoPath": upload.get("storage_path"),
            "captionPath": "",
            "captionFormat": caption.format,
            "captionHash": digest,
            "segmentsProvided": source.segments_provided,
            "segmentCount": len(source.segments),
            "overlays": overlays,
        }
        if integration_video_id:
            payload["integrationVideoId"] = integration_video_id
        if metadata:
            payload["metadata"] = dict(metadata)

        with self.locks.hold(upload_id):
            now = self.clock()
            job_id = self.documents.insert_one(
                JOBS,
                {
                    "upload_id": upload_id,
                    "user_id": owner,
                    "type": "render",
                    "payload": payload,
                    "status": RenderJobStatus.PENDING_RENDER.value,
                    "attempts": 0,
                    "created_at": now,
                    "updated_at": now,
                },
            )

            current = self.documents.find_one(UPLOADS, {"_id": upload_id}) or upload
            existing_path = current.get("render_asset_path")
            if existing_path and current.get("render_caption_hash") == digest:
                logger.info(
                    "Skipping render for upload %s; existing rendered asset matches caption hash",
                    upload_id,
                )
                self.documents.update_one(
                    JOBS,
                    {"_id": job_id},
                    {
                        "$set": {
                            "status": RenderJobStatus.RENDERED.value,
                            "result": {
                                "renderPath": existing_path,
                                "downloadUrl": self.objects.get_public_url(existing_path),
                            },
                            "updated_at": self.clock(),
                        }
                    },
                )
                return RenderOutcome(
                    job_id=job_id,
                    upload_id=upload_id,
                    status=RenderJobStatus.RENDERED,
                    skipped=True,
                    caption_hash=digest,
                    caption_path="",
                    video_path=upload.get("storage_path") or "",
                    output_path=existing_path,
                    caption_format=caption.format,
                    overlays=overlays,
                )

            caption_path = (
                f"{self.config.captions_prefix}/{owner}/{upload_id}/{job_id}.{caption.format}"
            )
            output_path = f"{self.config.renders_prefix}/{owner}/{job_id}/rendered.mp4"
            self.documents.update_one(
                JOBS,
                {"_id": job_id},
                {
                    "$set": {
                        "status": RenderJobStatus.QUEUED.value,
                        "payload": {**payload, "captionPath": caption_path},
                        "updated_at": self.clock(),
                    }
                },
            )

            try:
                self.objects.upload_file(
                    caption_path, caption.content.encode("utf-8"), caption.content_type
                )
            except StorageError:
                logger.error("Unable to upload caption file for job %s", job_id)
                self._fail_job(job_id, "CAPTION_UPLOAD_FAILED")
                raise

            self.documents.update_one(
                UPLOADS,
                {"_id": upload_id},
                {
                    "$set": {
                        "status": UploadStatus.RENDERING.value,
                        "caption_asset_path": caption_path,
                        "updated_at": self.clock(),
                    }
                },
            )

            render_payload: dict[str, Any] = {
                "jobId": job_id,
                "uploadId": upload_id,
                "videoPath": upload.get("storage_path"),
                "captionPath": caption_path,
                "captionFormat": caption.format,
                "template": template_name,
                "resolution": resolution_name,
                "outputPath": output_path,
                "overlays": overlays,
            }
            if integration_video_id:
                render_payload["integrationVideoId"] = integration_video_id

            try:
                self.worker.dispatch(render_payload, job_id=job_id, upload_id=upload_id)
            except CaptionConfigurationError:
                self._fail_job(job_id, "WORKER_NOT_CONFIGURED")
                raise
            except WorkerUnreachableError:
                self._fail_job(job_id, "WORKER_UNREACHABLE")
                raise
            except WorkerRejectedError as exc:
                self._fail_job(job_id, "WORKER_REJECTED", failure_reason=exc.reason)
                raise

            self.documents.update_one(JOBS, {"_id": job_id}, {"$inc": {"attempts": 1}})

        logger.info("Queued job %s caption=%s output=%s", job_id, caption_path, output_path)
        return RenderOutcome(
            job_id=job_id,
            upload_id=upload_id,
            status=RenderJobStatus.QUEUED,
            skipped=False,
            caption_hash=digest,
            caption_path=caption_path,
            video_path=upload.get("storage_path") or "",
            output_path=output_path,
            caption_format=caption.format,
            overlays=overlays,
        )

    # ------------------------------------------------------------------
    # Worker callbacks
    # ------------------------------------------------------------------

    def _load_job(self, job_id: str) -> dict[str, Any]:
        job = self.documents.find_one(JOBS, {"_id": job_id})
        if job is None:
            raise NotFoundError(f"Render job not found: {job_id}")
        return job

    def complete_render(
        self, job_id: str, render_path: str, download_url: str | None = None
    ) -> dict[str, Any]:
        """Record a finished render reported by the worker.

        Repeated completions of an already rendered job are no-ops.

        Returns:
            The updated job document.
        """
        job = self._load_job(job_id)
        if job.get("status") == RenderJobStatus.RENDERED.value:
            logger.info("Render job %s already completed", job_id)
            return job

        url = download_url or self.objects.get_public_url(render_path)
        now = self.clock()
        self.documents.update_one(
            JOBS,
            {"_id": job_id},
            {
                "$set": {
                    "status": RenderJobStatus.RENDERED.value,
                    "result": {"renderPath": render_path, "downloadUrl": url},
                    "updated_at": now,
                }
            },
        )
        self.documents.update_one(
            UPLOADS,
            {"_id": job["upload_id"]},
            {
                "$set": {
                    "render_asset_path": render_path,
                    "render_caption_hash": job.get("payload", {}).get("captionHash"),
                    "status": UploadStatus.RENDERED.value,
                    "updated_at": now,
                }
            },
        )
        job = self._load_job(job_id)
        logger.info("Render job %s completed: %s", job_id, render_path)

        for hook in self._completion_hooks:
            try:
                hook(job)
            except CaptionPipelineError as exc:
                logger.warning("Render completion follow-up failed for job %s: %s", job_id, exc)
        return job

    def fail_render(self, job_id: str, reason: str) -> dict[str, Any]:
        """Record a render failure reported by the worker."""
        job = self._load_job(job_id)
        self._fail_job(job_id, "RENDER_FAILED", failure_reason=reason)
        self.documents.update_one(
            UPLOADS,
            {"_id": job["upload_id"]},
            {"$set": {"status": UploadStatus.RENDER_FAILED.value, "updated_at": self.clock()}},
        )
        job = self._load_job(job_id)
        logger.error("Render job %s failed: %s", job_id, reason)

        for hook in self._failure_hooks:
            try:
                hook(job, reason)
            except CaptionPipelineError as exc:
                logger.warning("Render failure follow-up failed for job %s: %s", job_id, exc)
        return job

    def get_render_url(self, upload_id: str) -> str:
        """Return the public URL of an upload's rendered video.

        When an HTTP client is configured the asset is checked with ``HEAD``;
        a non-2xx answer means the asset is gone, a network error is only
        logged.

        Raises:
            NotFoundError: If the upload or its rendered asset is missing.
        """
        upload = self.load_upload(upload_id)
        render_path = upload.get("render_asset_path")
        if not render_path:
            raise NotFoundError("Rendered file not ready")

        url = self.objects.get_public_url(render_path)
        if self.http is not None and url.startswith(("http://", "https://")):
            try:
                response = self.http.head(url)
            except httpx.RequestError as exc:
                logger.warning("Render-url HEAD check failed: %s", exc)
            else:
                if not response.is_success:
                    raise NotFoundError("Rendered asset not available")
        return url
