"""Integration partner workflow: registration, caption sets, renders and callbacks.

Every status change appends ``{status, at, note?}`` to the video's
``workflowHistory``; the history is append-only.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from typing import Any

import httpx

from caption_pipeline.captions import resolve_template_name
from caption_pipeline.config import IntegrationConfig, RenderConfig, normalize_resolution
from caption_pipeline.errors import (
    CallbackDeliveryError,
    CaptionConfigurationError,
    CaptionPipelineError,
    ConflictError,
    NotFoundError,
    StorageError,
    WorkerRejectedError,
    WorkerUnreachableError,
)
from caption_pipeline.integration.callbacks import CallbackSender
from caption_pipeline.integration.models import (
    CAPTION_COLLECTION,
    EXTERNAL_SYSTEM,
    VIDEO_COLLECTION,
    CallbackError,
    CallbackKind,
    CallbackPayload,
    CaptionSetDocument,
    CaptionSetStatus,
    IntegrationVideo,
    WorkflowStatus,
)
from caption_pipeline.render.locks import utcnow
from caption_pipeline.render.models import (
    JOBS,
    TRANSCRIPTS,
    CaptionSource,
    RenderJobStatus,
    RenderOutcome,
)
from caption_pipeline.render.orchestrator import RenderOrchestrator
from caption_pipeline.segments import (
    MsSegment,
    Segment,
    normalize_segments,
    normalize_segments_from_ms,
    segments_to_ms_payload,
)
from caption_pipeline.storage.documents import DocumentStore
from caption_pipeline.storage.objects import ObjectStorage, StoredObject
from caption_pipeline.utils.logging_config import get_logger

logger = get_logger(__name__)

# Partner caption sets are always rendered with the kinetic karaoke look.
CAPTION_SET_TEMPLATE = "creator-kinetic"

_UNSAFE_FILENAME = re.compile(r"[^a-zA-Z0-9_./-]")
_NAME_EXTENSION = re.compile(r"\.([a-zA-Z0-9]+)$")
_URL_EXTENSION = re.compile(r"\.([a-zA-Z0-9]+)(?:$|[?#])", re.IGNORECASE)


def sanitize_filename(value: str) -> str:
    return _UNSAFE_FILENAME.sub("_", value)


def normalize_template(value: str | None, fallback: str = "karaoke") -> str:
    """Resolve a partner-supplied template name, falling back on unknown names."""
    if not value:
        return fallback
    try:
        return resolve_template_name(value)
    except CaptionConfigurationError:
        return fallback


class IntegrationService:
    """Tracks partner videos through transcription, approval and rendering."""

    def __init__(
        self,
        documents: DocumentStore,
        objects: ObjectStorage,
        orchestrator: RenderOrchestrator,
        callbacks: CallbackSender,
        http_client: httpx.Client,
        config: IntegrationConfig | None = None,
        render_config: RenderConfig | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.documents = documents
        self.objects = objects
        self.orchestrator = orchestrator
        self.callbacks = callbacks
        self.http = http_client
        self.config = config or IntegrationConfig()
        self.render_config = render_config or RenderConfig()
        self.clock = clock

    # ------------------------------------------------------------------
    # Video records
    # ------------------------------------------------------------------

    def get_video(self, external_video_id: str) -> IntegrationVideo:
        document = self.documents.find_one(VIDEO_COLLECTION, {"externalVideoId": external_video_id})
        if document is None:
            raise NotFoundError(f"Integration video not found: {external_video_id}")
        return IntegrationVideo.model_validate(document)

    def _update_video(self, external_video_id: str, patch: Mapping[str, Any]) -> None:
        self.documents.update_one(
            VIDEO_COLLECTION,
            {"externalVideoId": external_video_id},
            {"$set": {**patch, "updatedAt": self.clock()}},
        )

    def update_status(
        self, external_video_id: str, status: WorkflowStatus, note: str | None = None
    ) -> None:
        """Set the current status and append it to the workflow history."""
        now = self.clock()
        entry: dict[str, Any] = {"status": status.value, "at": now}
        if note:
            entry["note"] = note
        self.documents.update_one(
            VIDEO_COLLECTION,
            {"externalVideoId": external_video_id},
            {"$set": {"status": status.value, "updatedAt": now}, "$push": {"workflowHistory": entry}},
        )
        logger.debug("Video %s -> %s", external_video_id, status.value)

    def mirror_external_video(
        self,
        external_url: str,
        external_video_id: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> StoredObject | None:
        """Copy a partner video into owned storage.

        Returns:
            The stored object, or ``None`` if download or upload failed.
        """
        metadata = metadata or {}
        try:
            response = self.http.get(external_url, follow_redirects=True)
        except httpx.RequestError as exc:
            logger.warning("Failed to mirror video %s: %s", external_video_id, exc)
            return None
        if not response.is_success:
            logger.warning(
                "Failed to mirror video %s: download returned %d",
                external_video_id,
                response.status_code,
            )
            return None

        file_name = metadata.get("fileName")
        name_match = _NAME_EXTENSION.search(file_name) if isinstance(file_name, str) else None
        url_match = _URL_EXTENSION.search(external_url)
        match = name_match or url_match
        extension = match.group(1).lower() if match else "mp4"
        base_name = sanitize_filename(
            file_name if isinstance(file_name, str) else f"integration-{external_video_id}.{extension}"
        )
        timestamp_ms = int(self.clock().timestamp() * 1000)
        object_path = (
            f"{self.render_config.uploads_prefix}/integration/{external_video_id}/"
            f"{timestamp_ms}-{base_name}"
        )
        try:
            return self.objects.upload_file(
                object_path, response.content, response.headers.get("content-type")
            )
        except StorageError as exc:
            logger.warning("Failed to mirror video %s: %s", external_video_id, exc)
            return None

    def register_video(
        self,
        *,
        external_video_id: str,
        content_id: str,
        portal_id: str,
        video_url: str,
        transcription_callback_url: str,
        render_callback_url: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> IntegrationVideo:
        """Create or refresh a partner video record.

        The source video is mirrored on first registration and whenever the
        partner URL changes. Re-registration merges metadata and keeps the
        existing status and history.
        """
        existing_doc = self.documents.find_one(
            VIDEO_COLLECTION, {"externalVideoId": external_video_id}
        )
        existing = IntegrationVideo.model_validate(existing_doc) if existing_doc else None

        video_url_to_store = video_url
        storage_path: str | None = None
        url_changed = existing is not None and video_url != existing.original_video_url
        if existing is None or not existing.video_storage_path or url_changed:
            mirrored = self.mirror_external_video(video_url, external_video_id, metadata)
            if mirrored is not None:
                video_url_to_store = mirrored.url
                storage_path = mirrored.path
        else:
            storage_path = existing.video_storage_path
            video_url_to_store = existing.video_url

        merged_metadata = {
            **(existing.metadata if existing else {}),
            **(metadata or {}),
            "originalVideoUrl": video_url,
        }
        now = self.clock()

        if existing is not None:
            self._update_video(
                external_video_id,
                {
                    "contentId": content_id,
                    "portalId": portal_id,
                    "videoUrl": video_url_to_store,
                    "video_storage_path": storage_path or existing.video_storage_path,
                    "originalVideoUrl": video_url,
                    "transcriptionCallbackUrl": transcription_callback_url,
                    "renderCallbackUrl": render_callback_url,
                    "metadata": merged_metadata,
                },
            )
            logger.info("Refreshed integration video %s", external_video_id)
            return self.get_video(external_video_id)

        video = IntegrationVideo(
            external_video_id=external_video_id,
            external_system=EXTERNAL_SYSTEM,
            content_id=content_id,
            portal_id=portal_id,
            video_url=video_url_to_store,
            video_storage_path=storage_path,
            original_video_url=video_url,
            transcription_callback_url=transcription_callback_url,
            render_callback_url=render_callback_url,
            metadata=merged_metadata,
            status=WorkflowStatus.PENDING_TRANSCRIPTION,
            workflow_history=[
                {"status": WorkflowStatus.PENDING_TRANSCRIPTION, "at": now, "note": "Video registered"}
            ],
            callback_attempts=0,
            created_at=now,
            updated_at=now,
        )
        document = video.model_dump(by_alias=True, exclude_none=True, mode="python")
        document["workflowHistory"] = [
            {"status": entry.status.value, "at": entry.at, "note": entry.note}
            for entry in video.workflow_history
        ]
        self.documents.insert_one(VIDEO_COLLECTION, document)
        logger.info("Registered video %s", external_video_id)
        return self.get_video(external_video_id)

    def link_transcription(
        self,
        external_video_id: str,
        *,
        upload_id: str,
        transcript_id: str,
        transcription_job_id: str | None = None,
    ) -> None:
        self.get_video(external_video_id)
        patch = {"uploadId": upload_id, "transcriptId": transcript_id}
        if transcription_job_id:
            patch["transcriptionJobId"] = transcription_job_id
        self._update_video(external_video_id, patch)
        self.update_status(external_video_id, WorkflowStatus.TRANSCRIBING)
        logger.info("Linked transcription %s to %s", transcript_id, external_video_id)

    # ------------------------------------------------------------------
    # Caption sets
    # ------------------------------------------------------------------

    def _load_caption_set(self, caption_set_id: str | None) -> CaptionSetDocument | None:
        if not caption_set_id:
            return None
        document = self.documents.find_one(CAPTION_COLLECTION, {"_id": caption_set_id})
        return CaptionSetDocument.model_validate(document) if document else None

    def _insert_caption_set(
        self,
        video: IntegrationVideo,
        *,
        transcript_id: str | None,
        segments: Sequence[Segment],
        status: CaptionSetStatus,
        resolution: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> CaptionSetDocument:
        now = self.clock()
        caption_set = CaptionSetDocument(
            video_id=video.external_video_id,
            content_id=video.content_id,
            portal_id=video.portal_id,
            transcript_id=transcript_id,
            segments=list(segments),
            status=status,
            version=1,
            template=CAPTION_SET_TEMPLATE,
            resolution=resolution,
            metadata=dict(metadata) if metadata else None,
            created_at=now,
            updated_at=now,
        )
        caption_set_id = self.documents.insert_one(
            CAPTION_COLLECTION, caption_set.model_dump(by_alias=True, exclude_none=True)
        )
        self._update_video(video.external_video_id, {"captionSetId": caption_set_id})
        return caption_set.model_copy(update={"id": caption_set_id})

    def ensure_caption_draft(
        self,
        external_video_id: str,
        *,
        transcript_id: str,
        segments: Sequence[Segment],
    ) -> CaptionSetDocument:
        """Return the video's caption set, creating a version-1 draft if none exists."""
        video = self.get_video(external_video_id)
        existing = self._load_caption_set(video.caption_set_id)
        if existing is not None:
            return existing
        return self._insert_caption_set(
            video, transcript_id=transcript_id, segments=segments, status="draft"
        )

    def save_caption_set(
        self,
        external_video_id: str,
        segments: Sequence[MsSegment | Mapping[str, Any]],
        *,
        status: CaptionSetStatus = "draft",
        resolution: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> CaptionSetDocument:
        """Store millisecond segments, bumping ``version`` on every save."""
        video = self.get_video(external_video_id)
        normalized = normalize_segments_from_ms(segments)

        if video.caption_set_id:
            updated = self.documents.find_one_and_update(
                CAPTION_COLLECTION,
                {"_id": video.caption_set_id},
                {
                    "$set": {
                        "segments": [segment.model_dump(exclude_none=True) for segment in normalized],
                        "status": status,
                        "template": CAPTION_SET_TEMPLATE,
                        "resolution": resolution,
                        "metadata": dict(metadata) if metadata else None,
                        "updatedAt": self.clock(),
                    },
                    "$inc": {"version": 1},
                },
            )
            if updated is not None:
                return CaptionSetDocument.model_validate(updated)

        return self._insert_caption_set(
            video,
            transcript_id=video.transcript_id,
            segments=normalized,
            status=status,
            resolution=resolution,
            metadata=metadata,
        )

    def get_caption_set(self, external_video_id: str) -> CaptionSetDocument | None:
        video = self.get_video(external_video_id)
        return self._load_caption_set(video.caption_set_id)

    def get_caption_set_as_ms(self, external_video_id: str) -> dict[str, Any] | None:
        """Return the caption set in the partner's millisecond wire format."""
        caption_set = self.get_caption_set(external_video_id)
        if caption_set is None:
            return None
        return {
            "videoId": external_video_id,
            "captionSetId": caption_set.id,
            "transcriptId": caption_set.transcript_id,
            "status": caption_set.status,
            "version": caption_set.version,
            "template": caption_set.template,
            "resolution": caption_set.resolution,
            "segments": segments_to_ms_payload(caption_set.segments),
            "updatedAt": caption_set.updated_at,
        }

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def _record_callback(self, video: IntegrationVideo, **extra: Any) -> None:
        self._update_video(
            video.external_video_id,
            {
                "callbackAttempts": video.callback_attempts + 1,
                "lastCallbackAt": self.clock(),
                **extra,
            },
        )

    def send_transcription_callback(self, external_video_id: str) -> None:
        """Tell the partner the captions await approval.

        Raises:
            CallbackDeliveryError: If delivery failed; the video is marked failed.
        """
        video = self.get_video(external_video_id)
        payload = CallbackPayload(
            content_id=video.content_id,
            portal_id=video.portal_id,
            video_id=video.external_video_id,
            status=WorkflowStatus.AWAITING_APPROVAL,
            transcription_job_id=video.transcription_job_id,
            transcript_id=video.transcript_id,
            caption_set_id=video.caption_set_id,
        )
        delivered = self.callbacks.send(
            video.transcription_callback_url, payload, self.config.callback_max_retries
        )
        self._record_callback(video)

        if not delivered:
            self.update_status(external_video_id, WorkflowStatus.FAILED, "Transcription callback failed")
            raise CallbackDeliveryError("Failed to send transcription callback")
        self.update_status(external_video_id, WorkflowStatus.AWAITING_APPROVAL)

    def complete_transcription(
        self,
        external_video_id: str,
        *,
        upload_id: str,
        transcript_id: str,
        transcription_job_id: str | None = None,
    ) -> CaptionSetDocument:
        """Link a finished transcript, draft a caption set from it and notify the partner."""
        transcript = self.documents.find_one(TRANSCRIPTS, {"_id": transcript_id})
        if transcript is None:
            raise NotFoundError("Transcript not found")

        self.link_transcription(
            external_video_id,
            upload_id=upload_id,
            transcript_id=transcript_id,
            transcription_job_id=transcription_job_id,
        )
        segments = normalize_segments(transcript.get("segments") or [], transcript.get("text") or "")
        caption_set = self.ensure_caption_draft(
            external_video_id, transcript_id=transcript_id, segments=segments
        )
        self.send_transcription_callback(external_video_id)
        return caption_set

    def link_render_job(
        self, external_video_id: str, job_id: str, render_options: Mapping[str, Any] | None = None
    ) -> None:
        self._update_video(
            external_video_id,
            {"renderJobId": job_id, "renderOptions": dict(render_options) if render_options else None},
        )
        self.update_status(external_video_id, WorkflowStatus.RENDERING)
        logger.info("Linked render job %s to %s", job_id, external_video_id)

    def send_render_progress_callback(self, external_video_id: str, progress: float) -> bool:
        """Report render progress; a no-op until a render job is linked."""
        video = self.get_video(external_video_id)
        if not video.render_job_id:
            return False
        payload = CallbackPayload(
            content_id=video.content_id,
            portal_id=video.portal_id,
            video_id=video.external_video_id,
            status=WorkflowStatus.RENDERING,
            render_job_id=video.render_job_id,
            progress=progress,
        )
        return self.callbacks.send(
            video.render_callback_url, payload, self.config.callback_max_retries
        )

    def emit_initial_progress(self, external_video_id: str) -> None:
        """Background task body: send progress 0 and log instead of raising."""
        try:
            if not self.send_render_progress_callback(external_video_id, 0):
                logger.warning("Unable to emit initial progress for %s", external_video_id)
        except CaptionPipelineError as exc:
            logger.warning("Unable to emit initial progress for %s: %s", external_video_id, exc)

    def send_render_complete_callback(self, external_video_id: str) -> None:
        """Tell the partner the captioned video is ready.

        Raises:
            ConflictError: If no render job is linked or it has not finished.
            CallbackDeliveryError: If delivery failed; the video is marked failed.
        """
        video = self.get_video(external_video_id)
        if not video.render_job_id:
            raise ConflictError(f"Render job not linked for {external_video_id}")

        job = self.documents.find_one(JOBS, {"_id": video.render_job_id})
        if job is None or job.get("status") != RenderJobStatus.RENDERED.value:
            raise ConflictError(f"Render job not completed: {video.render_job_id}")

        rendered_url = (job.get("result") or {}).get("downloadUrl") or ""
        payload = CallbackPayload(
            content_id=video.content_id,
            portal_id=video.portal_id,
            video_id=video.external_video_id,
            status=WorkflowStatus.CAPTIONED,
            render_job_id=video.render_job_id,
            rendered_video_url=rendered_url,
            caption_set_id=video.caption_set_id,
        )
        delivered = self.callbacks.send(
            video.render_callback_url, payload, self.config.callback_max_retries
        )
        self._record_callback(video, captionedUrl=rendered_url)

        if not delivered:
            self.update_status(external_video_id, WorkflowStatus.FAILED, "Render callback failed")
            raise CallbackDeliveryError("Failed to send render completion callback")
        self.update_status(external_video_id, WorkflowStatus.CAPTIONED)

    def send_error_callback(self, external_video_id: str, kind: CallbackKind, message: str) -> bool:
        """Report a failure to the partner and mark the video failed.

        The video is marked failed whether or not the callback arrives.
        """
        video = self.get_video(external_video_id)
        payload = CallbackPayload(
            content_id=video.content_id,
            portal_id=video.portal_id,
            video_id=video.external_video_id,
            status=WorkflowStatus.FAILED,
            transcription_job_id=video.transcription_job_id,
            transcript_id=video.transcript_id,
            render_job_id=video.render_job_id,
            error=CallbackError(
                message=message,
                code="TRANSCRIPTION_FAILED" if kind == "transcription" else "RENDER_FAILED",
            ),
        )
        url = video.transcription_callback_url if kind == "transcription" else video.render_callback_url
        delivered = self.callbacks.send(url, payload, self.config.error_callback_max_retries)
        self.update_status(external_video_id, WorkflowStatus.FAILED, message)
        return delivered

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render_video(
        self,
        external_video_id: str,
        *,
        template: str | None = None,
        resolution: str | None = None,
        caption_set_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> RenderOutcome:
        """Render the approved caption set of a partner video.

        Raises:
            NotFoundError: If the video or its upload is missing.
            ConflictError: If the upload is not linked, no caption set
                exists, or ``caption_set_id`` names a different set.
        """
        video = self.get_video(external_video_id)
        if not video.upload_id:
            raise ConflictError("Upload linkage missing", code="upload_not_linked")

        caption_set = self._load_caption_set(video.caption_set_id)
        if caption_set is None:
            raise ConflictError("Caption set not ready", code="caption_set_missing")
        if caption_set_id and caption_set.id != caption_set_id:
            raise ConflictError("Caption set mismatch", code="caption_set_mismatch")

        template_name = normalize_template(template or caption_set.template)
        resolution_name = normalize_resolution(resolution or caption_set.resolution)
        upload = self.orchestrator.load_upload(video.upload_id)

        source = CaptionSource(
            segments=caption_set.segments,
            transcript_id=caption_set.transcript_id,
            segments_provided=True,
        )
        try:
            outcome = self.orchestrator.render_segments(
                upload,
                source,
                template=template_name,
                resolution=resolution_name,
                integration_video_id=video.external_video_id,
                metadata=metadata,
            )
        except (
            CaptionConfigurationError,
            StorageError,
            WorkerUnreachableError,
            WorkerRejectedError,
        ) as exc:
            self.send_error_callback(external_video_id, "render", exc.message)
            raise

        self.link_render_job(
            external_video_id,
            outcome.job_id,
            {"template": template_name, "resolution": resolution_name, "metadata": metadata},
        )
        if outcome.skipped:
            self.send_render_complete_callback(external_video_id)
        return outcome

    # ------------------------------------------------------------------
    # Render job hooks
    # ------------------------------------------------------------------

    def handle_render_complete(self, job: Mapping[str, Any]) -> None:
        external_video_id = (job.get("payload") or {}).get("integrationVideoId")
        if external_video_id:
            self.send_render_complete_callback(external_video_id)

    def handle_render_failed(self, job: Mapping[str, Any], reason: str) -> None:
        external_video_id = (job.get("payload") or {}).get("integrationVideoId")
        if external_video_id:
            self.send_error_callback(external_video_id, "render", reason or "Render failed")
