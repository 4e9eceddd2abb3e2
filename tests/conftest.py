"""Shared test fixtures for the caption_pipeline test suite."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import httpx
import pytest

from caption_pipeline.api.context import ServiceContext
from caption_pipeline.config import ExportConfig, IntegrationConfig, RenderConfig, WorkerConfig
from caption_pipeline.render.models import TRANSCRIPTS, UPLOADS
from caption_pipeline.render.orchestrator import RenderOrchestrator
from caption_pipeline.render.worker import WorkerClient
from caption_pipeline.storage.documents import InMemoryDocumentStore
from caption_pipeline.storage.objects import LocalObjectStorage

FIXED_NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
WORKER_URL = "http://worker.test"
WORKER_SECRET = "worker-secret"
PUBLIC_BASE_URL = "https://cdn.test"

Handler = Callable[[httpx.Request], httpx.Response]


class RecordingTransport:
    """Dispatch outbound requests to per-host handlers and keep every request.

    Hosts without a handler answer ``200 {}``.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.handlers: dict[str, Handler] = {}

    def route(self, host: str, handler: Handler) -> None:
        self.handlers[host] = handler

    def sent_to(self, host: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.url.host == host]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.handlers.get(request.url.host)
        if handler is None:
            return httpx.Response(200, json={})
        return handler(request)


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    """Clock that always returns :data:`FIXED_NOW`."""
    return lambda: FIXED_NOW


@pytest.fixture
def documents() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def objects(tmp_path: Path) -> LocalObjectStorage:
    """Local object storage below the test's temporary directory."""
    return LocalObjectStorage(tmp_path / "storage", PUBLIC_BASE_URL)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def http_client(transport: RecordingTransport) -> Iterator[httpx.Client]:
    client = httpx.Client(transport=httpx.MockTransport(transport))
    yield client
    client.close()


@pytest.fixture
def worker_config() -> WorkerConfig:
    return WorkerConfig(url=WORKER_URL, secret=WORKER_SECRET, token_ttl_sec=600, timeout_sec=5)


@pytest.fixture
def render_config() -> RenderConfig:
    return RenderConfig(
        default_template="karaoke",
        default_resolution="1080p",
        lock_ttl_sec=120,
        captions_prefix="captions",
        renders_prefix="renders",
        uploads_prefix="uploads",
    )


@pytest.fixture
def orchestrator(
    documents: InMemoryDocumentStore,
    objects: LocalObjectStorage,
    http_client: httpx.Client,
    worker_config: WorkerConfig,
    render_config: RenderConfig,
    fixed_clock: Callable[[], datetime],
) -> RenderOrchestrator:
    """Render orchestrator wired to in-memory stores and the recording transport."""
    return RenderOrchestrator(
        documents,
        objects,
        WorkerClient(worker_config, http_client),
        render_config,
        http_client=http_client,
        clock=fixed_clock,
    )


@pytest.fixture
def seed_upload(documents: InMemoryDocumentStore) -> Callable[..., dict[str, Any]]:
    """Factory inserting an upload plus one transcript for it.

    Returns:
        Function returning ``{"upload_id", "transcript_id"}``.
    """

    def _seed(
        upload_id: str = "upload-1",
        user_id: str = "user-1",
        transcript_id: str = "transcript-1",
        segments: list[dict[str, Any]] | None = None,
        text: str = "Hello there. Money talks!",
    ) -> dict[str, Any]:
        documents.insert_one(
            UPLOADS,
            {
                "_id": upload_id,
                "user_id": user_id,
                "storage_path": f"uploads/{user_id}/{upload_id}.mp4",
                "status": "uploaded",
            },
        )
        documents.insert_one(
            TRANSCRIPTS,
            {
                "_id": transcript_id,
                "upload_id": upload_id,
                "user_id": user_id,
                "text": text,
                "segments": segments
                if segments is not None
                else [
                    {"id": "s1", "start": 0.0, "end": 1.5, "text": "Hello there."},
                    {"id": "s2", "start": 1.5, "end": 3.0, "text": "Money talks!"},
                ],
                "created_at": FIXED_NOW - timedelta(minutes=5),
            },
        )
        return {"upload_id": upload_id, "transcript_id": transcript_id}

    return _seed


@pytest.fixture
def build_context(
    documents: InMemoryDocumentStore,
    objects: LocalObjectStorage,
    http_client: httpx.Client,
    worker_config: WorkerConfig,
    render_config: RenderConfig,
) -> Callable[..., ServiceContext]:
    """Factory wiring a full service context onto the test stores and transport."""

    def _build(*, api_token: str = "", export: ExportConfig | None = None) -> ServiceContext:
        return ServiceContext.build(
            worker=worker_config,
            render=render_config,
            export=export or ExportConfig(enabled=False),
            integration=IntegrationConfig(
                signing_secret="integration-secret",
                api_token=api_token,
                callback_max_retries=3,
                error_callback_max_retries=2,
                timeout_sec=5,
            ),
            documents=documents,
            objects=objects,
            http_client=http_client,
            environ={},
            sleep=lambda _seconds: None,
        )

    return _build
