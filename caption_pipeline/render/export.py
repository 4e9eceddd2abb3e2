"""Export rendered videos to external portals.

An export request triggers (or reuses) a render and records an export row in
``render_jobs``. Once the render is available the export payload is POSTed
to the portal in a short synchronous burst; each failed attempt schedules
``nextAttemptAt`` for an external retry sweep instead of sleeping.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from caption_pipeline.config import ExportConfig
from caption_pipeline.errors import CaptionPipelineError, ForbiddenError, NotFoundError
from caption_pipeline.render.locks import utcnow
from caption_pipeline.render.models import EXPORT_JOBS, ExportJobStatus, RenderRequest
from caption_pipeline.render.orchestrator import RenderOrchestrator
from caption_pipeline.segments.models import RawSegment
from caption_pipeline.storage.documents import DocumentStore
from caption_pipeline.utils.logging_config import get_logger

logger = get_logger(__name__)


class ExportRequest(BaseModel):
    """Body of an export request."""

    model_config = ConfigDict(populate_by_name=True)

    upload_id: str = Field(..., alias="uploadId", min_length=1)
    file_name: str = Field(..., alias="fileName", min_length=1)
    description: str = ""
    portal_id: str | None = Field(default=None, alias="portalId")
    segments: list[RawSegment] | None = None
    custom_styles: dict[str, Any] | None = Field(default=None, alias="customStyles")


@dataclass
class Portal:
    """A configured export destination."""

    id: str
    name: str
    url: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass
class ExportResult:
    job_id: str
    status: ExportJobStatus
    skipped: bool = False

    def to_response(self) -> dict[str, Any]:
        response: dict[str, Any] = {"success": True, "jobId": self.job_id}
        if self.skipped:
            response["skipped"] = True
        return response


class ExportService:
    """Create export rows, deliver them to portals and list configured portals."""

    def __init__(
        self,
        documents: DocumentStore,
        orchestrator: RenderOrchestrator,
        http_client: httpx.Client,
        config: ExportConfig | None = None,
        *,
        environ: Mapping[str, str] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.documents = documents
        self.orchestrator = orchestrator
        self.http = http_client
        self.config = config or ExportConfig()
        self.environ = environ if environ is not None else os.environ
        self.clock = clock

    def list_portals(self) -> list[Portal]:
        """Return portals from ``PORTAL_EXPORT_URL_<n>`` / ``PORTAL_EXPORT_NAME_<n>``.

        Indices ``1..portal_max_count`` are scanned. When none is set, the
        single default portal is returned if configured.
        """
        portals = []
        for index in range(1, self.config.portal_max_count + 1):
            url = self.environ.get(f"PORTAL_EXPORT_URL_{index}")
            if url:
                name = self.environ.get(f"PORTAL_EXPORT_NAME_{index}") or f"Portal {index}"
                portals.append(Portal(id=str(index), name=name, url=url))

        if not portals and self.config.default_portal_url:
            portals.append(
                Portal(
                    id="default",
                    name=self.config.default_portal_name or "Portal",
                    url=self.config.default_portal_url,
                )
            )
        return portals

    def resolve_portal_url(self, portal_id: str | None) -> str | None:
        if portal_id and portal_id != "default":
            return self.environ.get(f"PORTAL_EXPORT_URL_{portal_id}") or None
        return self.config.default_portal_url or None

    def _update(self, export_id: str, fields: Mapping[str, Any]) -> None:
        self.documents.update_one(
            EXPORT_JOBS, {"_id": export_id}, {"$set": {**fields, "updatedAt": self.clock()}}
        )

    def start_export(self, request: ExportRequest) -> ExportResult:
        """Trigger a render for the upload and record an export row.

        With ``insert_row_first`` the row exists before the render is
        triggered and a trigger failure is recorded on it as
        ``trigger_failed``; otherwise the row is only inserted once the
        trigger succeeded.

        Raises:
            ForbiddenError: If portal export is disabled.
        """
        if not self.config.enabled:
            raise ForbiddenError("Portal export disabled", code="export_disabled")

        now = self.clock()
        row: dict[str, Any] = {
            "uploadId": request.upload_id,
            "fileName": request.file_name,
            "description": request.description,
            "targetPortal": self.resolve_portal_url(request.portal_id),
            "status": ExportJobStatus.PENDING_RENDER.value,
            "attempts": 0,
            "createdAt": now,
            "updatedAt": now,
        }
        render_request = RenderRequest(
            uploadId=request.upload_id,
            template=self.orchestrator.config.default_template,
            resolution=self.orchestrator.config.default_resolution,
            segments=request.segments or None,
            customStyles=request.custom_styles,
        )

        export_id: str | None = None
        if self.config.insert_row_first:
            export_id = self.documents.insert_one(EXPORT_JOBS, row)

        try:
            outcome = self.orchestrator.trigger_render(render_request, user_id=None)
        except CaptionPipelineError as exc:
            logger.error("Failed to trigger render for export of upload %s: %s", request.upload_id, exc)
            if export_id is not None:
                self._update(
                    export_id,
                    {"status": ExportJobStatus.TRIGGER_FAILED.value, "lastError": str(exc)},
                )
            raise

        if export_id is None:
            export_id = self.documents.insert_one(EXPORT_JOBS, row)

        if outcome.skipped:
            self._update(
                export_id,
                {
                    "status": ExportJobStatus.RENDERED.value,
                    "renderedVideoUrl": self.orchestrator.objects.get_public_url(outcome.output_path),
                    "captionHash": outcome.caption_hash,
                },
            )
            self.deliver_export(export_id)
            return ExportResult(job_id=export_id, status=ExportJobStatus.RENDERED, skipped=True)

        self._update(
            export_id,
            {
                "status": ExportJobStatus.QUEUED.value,
                "workerJobId": outcome.job_id,
                "captionHash": outcome.caption_hash,
            },
        )
        logger.info("Export %s waiting for render job %s", export_id, outcome.job_id)
        return ExportResult(job_id=export_id, status=ExportJobStatus.QUEUED)

    def deliver_export(self, export_id: str) -> bool:
        """POST the export payload to the row's portal.

        Up to ``max_attempts`` POSTs are made back to back. Each failure sets
        ``export_failed`` with ``nextAttemptAt = now + 2**attempt * retry_base_sec``;
        the first success sets ``exported``.

        Returns:
            ``True`` if the portal accepted the export.
        """
        job = self.documents.find_one(EXPORT_JOBS, {"_id": export_id})
        if job is None:
            raise NotFoundError(f"Export job not found: {export_id}")

        portal_url = job.get("targetPortal")
        if not portal_url:
            logger.info("Export %s has no target portal; delivery skipped", export_id)
            return False

        payload = {
            "fileName": job.get("fileName"),
            "description": job.get("description") or "",
            "renderedVideoUrl": job.get("renderedVideoUrl"),
            "source": self.config.source_name,
            "jobId": export_id,
        }
        headers = {}
        if self.config.worker_auth:
            headers["Authorization"] = f"Bearer {self.config.worker_auth}"
        if self.config.portal_secret:
            headers["x-portal-secret"] = self.config.portal_secret

        for attempt in range(self.config.max_attempts):
            try:
                response = self.http.post(
                    portal_url, json=payload, headers=headers, timeout=self.config.timeout_sec
                )
            except httpx.RequestError as exc:
                error = str(exc)
            else:
                if response.is_success:
                    self._update(
                        export_id,
                        {
                            "status": ExportJobStatus.EXPORTED.value,
                            "attempts": attempt + 1,
                            "lastAttemptAt": self.clock(),
                        },
                    )
                    logger.info("Export %s delivered to %s", export_id, portal_url)
                    return True
                error = response.text

            now = self.clock()
            retry_delay = timedelta(seconds=2**attempt * self.config.retry_base_sec)
            logger.warning(
                "Export %s attempt %d/%d failed: %s",
                export_id,
                attempt + 1,
                self.config.max_attempts,
                error,
            )
            self._update(
                export_id,
                {
                    "status": ExportJobStatus.EXPORT_FAILED.value,
                    "attempts": attempt + 1,
                    "lastAttemptAt": now,
                    "nextAttemptAt": now + retry_delay,
                    "lastError": error,
                },
            )
        return False

    def handle_render_complete(self, job: Mapping[str, Any]) -> None:
        """Deliver exports that were waiting on render job ``job``."""
        waiting = self.documents.find(
            EXPORT_JOBS,
            {
                "workerJobId": job["_id"],
                "status": {"$in": [ExportJobStatus.PENDING_RENDER.value, ExportJobStatus.QUEUED.value]},
            },
        )
        result = job.get("result") or {}
        for export in waiting:
            self._update(
                export["_id"],
                {
                    "status": ExportJobStatus.RENDERED.value,
                    "renderedVideoUrl": result.get("downloadUrl"),
                },
            )
            self.deliver_export(export["_id"])

    def handle_render_failed(self, job: Mapping[str, Any], reason: str) -> None:
        waiting = self.documents.find(
            EXPORT_JOBS,
            {
                "workerJobId": job["_id"],
                "status": {"$in": [ExportJobStatus.PENDING_RENDER.value, ExportJobStatus.QUEUED.value]},
            },
        )
        for export in waiting:
            self._update(export["_id"], {"status": ExportJobStatus.FAILED.value, "lastError": reason})
