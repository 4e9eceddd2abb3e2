"""Render job orchestration: caption dispatch to the worker and portal export."""

from caption_pipeline.render.export import ExportRequest, ExportResult, ExportService, Portal
from caption_pipeline.render.locks import RenderLock
from caption_pipeline.render.models import (
    CaptionSource,
    ExportJobStatus,
    RenderJobStatus,
    RenderOutcome,
    RenderRequest,
    UploadStatus,
)
from caption_pipeline.render.orchestrator import RenderOrchestrator
from caption_pipeline.render.worker import WorkerClient, sign_worker_token, verify_worker_token

__all__ = [
    "CaptionSource",
    "ExportJobStatus",
    "ExportRequest",
    "ExportResult",
    "ExportService",
    "Portal",
    "RenderJobStatus",
    "RenderLock",
    "RenderOrchestrator",
    "RenderOutcome",
    "RenderRequest",
    "UploadStatus",
    "WorkerClient",
    "sign_worker_token",
    "verify_worker_token",
]
