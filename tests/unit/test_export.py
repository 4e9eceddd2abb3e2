"""Unit tests for portal export rows and delivery."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import httpx
import pytest

from caption_pipeline.config import ExportConfig
from caption_pipeline.errors import ForbiddenError, NotFoundError
from caption_pipeline.render import ExportRequest, ExportService, Portal, RenderOrchestrator
from caption_pipeline.render.models import EXPORT_JOBS
from caption_pipeline.storage.documents import InMemoryDocumentStore

PORTAL_HOST = "portal.test"


def _export_config(**overrides: Any) -> ExportConfig:
    values: dict[str, Any] = {
        "enabled": True,
        "default_portal_url": "https://portal.test/import",
        "default_portal_name": "Main portal",
        "portal_secret": "portal-secret",
        "worker_auth": "",
        "max_attempts": 3,
        "retry_base_sec": 60,
        "portal_max_count": 10,
        "insert_row_first": True,
        "source_name": "AutoCaptions",
        "timeout_sec": 5,
    }
    values.update(overrides)
    return ExportConfig(**values)


@pytest.fixture
def make_exports(
    documents: InMemoryDocumentStore,
    orchestrator: RenderOrchestrator,
    http_client: httpx.Client,
    fixed_clock: Callable[[], datetime],
) -> Callable[..., ExportService]:
    """Factory building an export service subscribed to render completion."""

    def _make(environ: dict[str, str] | None = None, **overrides: Any) -> ExportService:
        service = ExportService(
            documents,
            orchestrator,
            http_client,
            _export_config(**overrides),
            environ=environ or {},
            clock=fixed_clock,
        )
        orchestrator.add_completion_hook(service.handle_render_complete)
        orchestrator.add_failure_hook(service.handle_render_failed)
        return service

    return _make


def _request() -> ExportRequest:
    return ExportRequest(uploadId="upload-1", fileName="clip.mp4", description="Launch teaser")


def test_start_export__waits_for_render(
    make_exports: Callable[..., ExportService],
    documents: InMemoryDocumentStore,
    transport: Any,
    seed_upload: Callable[..., dict[str, Any]],
) -> None:
    seed_upload()
    exports = make_exports()

    result = exports.start_export(_request())

    assert result.to_response() == {"success": True, "jobId": result.job_id}
    row = documents.find_one(EXPORT_JOBS, {"_id": result.job_id})
    assert row["status"] == "queued"
    assert row["targetPortal"] == "https://portal.test/import"
    assert row["workerJobId"]
    assert transport.sent_to(PORTAL_HOST) == []


def test_deliver_export__schedules_retry_after_failures(
    make_exports: Callable[..., ExportService],
    orchestrator: RenderOrchestrator,
    documents: InMemoryDocumentStore,
    transport: Any,
    seed_upload: Callable[..., dict[str, Any]],
    fixed_clock: Callable[[], datetime],
) -> None:
    """A portal that always fails leaves the row export_failed with a backoff."""
    transport.route(PORTAL_HOST, lambda request: httpx.Response(500, text="portal exploded"))
    seed_upload()
    exports = make_exports()
    result = exports.start_export(_request())
    row = documents.find_one(EXPORT_JOBS, {"_id": result.job_id})

    orchestrator.complete_render(row["workerJobId"], "renders/user-1/out.mp4", "https://cdn.test/out.mp4")

    row = documents.find_one(EXPORT_JOBS, {"_id": result.job_id})
    assert row["status"] == "export_failed"
    assert row["attempts"] == 3
    assert row["lastAttemptAt"] == fixed_clock()
    assert row["nextAttemptAt"] == fixed_clock() + timedelta(seconds=240)
    assert row["lastError"] == "portal exploded"

    sent = transport.sent_to(PORTAL_HOST)
    assert len(sent) == 3
    assert sent[0].headers["x-portal-secret"] == "portal-secret"
    assert "Authorization" not in sent[0].headers
    assert json.loads(sent[0].content) == {
        "fileName": "clip.mp4",
        "description": "Launch teaser",
        "renderedVideoUrl": "https://cdn.test/out.mp4",
        "source": "AutoCaptions",
        "jobId": result.job_id,
    }


def test_deliver_export__marks_exported(
    make_exports: Callable[..., ExportService],
    orchestrator: RenderOrchestrator,
    documents: InMemoryDocumentStore,
    transport: Any,
    seed_upload: Callable[..., dict[str, Any]],
) -> None:
    seed_upload()
    exports = make_exports(worker_auth="portal-token")
    result = exports.start_export(_request())
    row = documents.find_one(EXPORT_JOBS, {"_id": result.job_id})

    orchestrator.complete_render(row["workerJobId"], "renders/user-1/out.mp4")

    row = documents.find_one(EXPORT_JOBS, {"_id": result.job_id})
    assert row["status"] == "exported"
    assert row["attempts"] == 1
    [sent] = transport.sent_to(PORTAL_HOST)
    assert sent.headers["Authorization"] == "Bearer portal-token"


def test_start_export__reused_render_delivers_immediately(
    make_exports: Callable[..., ExportService],
    orchestrator: RenderOrchestrator,
    documents: InMemoryDocumentStore,
    transport: Any,
    seed_upload: Callable[..., dict[str, Any]],
) -> None:
    seed_upload()
    exports = make_exports()
    first = exports.start_export(_request())
    row = documents.find_one(EXPORT_JOBS, {"_id": first.job_id})
    orchestrator.complete_render(row["workerJobId"], "renders/user-1/out.mp4")

    second = exports.start_export(_request())

    assert second.skipped is True
    assert second.to_response() == {"success": True, "jobId": second.job_id, "skipped": True}
    row = documents.find_one(EXPORT_JOBS, {"_id": second.job_id})
    assert row["status"] == "exported"
    assert row["renderedVideoUrl"] == "https://cdn.test/renders/user-1/out.mp4"
    assert len(transport.sent_to(PORTAL_HOST)) == 2


def test_start_export__trigger_failure_is_recorded(
    make_exports: Callable[..., ExportService],
    documents: InMemoryDocumentStore,
) -> None:
    exports = make_exports()

    with pytest.raises(NotFoundError):
        exports.start_export(_request())

    [row] = documents.find(EXPORT_JOBS, {"uploadId": "upload-1"})
    assert row["status"] == "trigger_failed"
    assert row["lastError"] == "Upload not found"


def test_start_export__trigger_first_ordering_leaves_no_row(
    make_exports: Callable[..., ExportService],
    documents: InMemoryDocumentStore,
) -> None:
    exports = make_exports(insert_row_first=False)

    with pytest.raises(NotFoundError):
        exports.start_export(_request())

    assert documents.find(EXPORT_JOBS, {}) == []


def test_start_export__disabled(
    make_exports: Callable[..., ExportService],
    documents: InMemoryDocumentStore,
) -> None:
    exports = make_exports(enabled=False)

    with pytest.raises(ForbiddenError) as excinfo:
        exports.start_export(_request())

    assert excinfo.value.status_code == 403
    assert excinfo.value.code == "export_disabled"
    assert documents.find(EXPORT_JOBS, {}) == []


def test_handle_render_failed__fails_waiting_exports(
    make_exports: Callable[..., ExportService],
    orchestrator: RenderOrchestrator,
    documents: InMemoryDocumentStore,
    seed_upload: Callable[..., dict[str, Any]],
) -> None:
    seed_upload()
    exports = make_exports()
    result = exports.start_export(_request())
    row = documents.find_one(EXPORT_JOBS, {"_id": result.job_id})

    orchestrator.fail_render(row["workerJobId"], "encoder crashed")

    row = documents.find_one(EXPORT_JOBS, {"_id": result.job_id})
    assert row["status"] == "failed"
    assert row["lastError"] == "encoder crashed"


def test_list_portals__numbered_entries(make_exports: Callable[..., ExportService]) -> None:
    exports = make_exports(
        environ={
            "PORTAL_EXPORT_URL_1": "https://a.test/import",
            "PORTAL_EXPORT_NAME_1": "Alpha",
            "PORTAL_EXPORT_URL_3": "https://c.test/import",
            "PORTAL_EXPORT_URL_11": "https://ignored.test/import",
        }
    )

    assert exports.list_portals() == [
        Portal(id="1", name="Alpha", url="https://a.test/import"),
        Portal(id="3", name="Portal 3", url="https://c.test/import"),
    ]
    assert exports.resolve_portal_url("3") == "https://c.test/import"
    assert exports.resolve_portal_url("7") is None
    assert exports.resolve_portal_url(None) == "https://portal.test/import"


def test_list_portals__default_fallback(make_exports: Callable[..., ExportService]) -> None:
    exports = make_exports()

    assert [portal.to_dict() for portal in exports.list_portals()] == [
        {"id": "default", "name": "Main portal", "url": "https://portal.test/import"}
    ]
