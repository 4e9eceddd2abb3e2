"""Process-wide service handles for the API.

One :class:`ServiceContext` is built when the application starts and closed
on shutdown; routes receive it through :func:`get_context`.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

import httpx
from fastapi import Request

from caption_pipeline.config import (
    ExportConfig,
    IntegrationConfig,
    RenderConfig,
    StorageConfig,
    WorkerConfig,
)
from caption_pipeline.integration.callbacks import CallbackSender
from caption_pipeline.integration.service import IntegrationService
from caption_pipeline.render.export import ExportService
from caption_pipeline.render.orchestrator import RenderOrchestrator
from caption_pipeline.render.worker import WorkerClient
from caption_pipeline.storage.documents import (
    DocumentStore,
    InMemoryDocumentStore,
    MongoDocumentStore,
)
from caption_pipeline.storage.objects import LocalObjectStorage, ObjectStorage, S3ObjectStorage
from caption_pipeline.transcripts.service import TranscriptService
from caption_pipeline.utils.logging_config import get_logger

logger = get_logger(__name__)


def build_document_store(config: StorageConfig) -> DocumentStore:
    """Create the configured document store (``memory`` or ``mongo``)."""
    if config.document_backend == "mongo":
        if not config.mongodb_uri:
            logger.warning("DOCUMENT_STORE_BACKEND=mongo but MONGODB_URI is empty; using default host")
        return MongoDocumentStore(config.mongodb_uri or "mongodb://localhost:27017", config.mongodb_db)
    return InMemoryDocumentStore()


def build_object_storage(config: StorageConfig) -> ObjectStorage:
    """Create the configured object storage (``local`` or ``s3``)."""
    if config.object_backend == "s3":
        return S3ObjectStorage(
            config.s3_bucket,
            region=config.s3_region,
            endpoint_url=config.s3_endpoint_url,
            public_base_url=config.public_base_url,
        )
    return LocalObjectStorage(config.local_root, config.public_base_url)


@dataclass
class ServiceContext:
    """Shared clients and the services built on top of them."""

    documents: DocumentStore
    objects: ObjectStorage
    http: httpx.Client
    worker_config: WorkerConfig
    integration_config: IntegrationConfig
    orchestrator: RenderOrchestrator
    exports: ExportService
    integration: IntegrationService
    transcripts: TranscriptService
    closed: bool = field(default=False, init=False)

    @classmethod
    def build(
        cls,
        *,
        storage: StorageConfig | None = None,
        worker: WorkerConfig | None = None,
        render: RenderConfig | None = None,
        export: ExportConfig | None = None,
        integration: IntegrationConfig | None = None,
        documents: DocumentStore | None = None,
        objects: ObjectStorage | None = None,
        http_client: httpx.Client | None = None,
        environ: Mapping[str, str] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> ServiceContext:
        """Wire services from configuration, accepting prebuilt clients."""
        storage = storage or StorageConfig()
        worker = worker or WorkerConfig()
        render = render or RenderConfig()
        export = export or ExportConfig()
        integration = integration or IntegrationConfig()

        documents = documents if documents is not None else build_document_store(storage)
        objects = objects if objects is not None else build_object_storage(storage)
        http = http_client if http_client is not None else httpx.Client(timeout=worker.timeout_sec)

        orchestrator = RenderOrchestrator(
            documents, objects, WorkerClient(worker, http), render, http_client=http
        )
        exports = ExportService(documents, orchestrator, http, export, environ=environ)
        callbacks = CallbackSender(
            http, integration.signing_secret, timeout_sec=integration.timeout_sec, sleep=sleep
        )
        integration_service = IntegrationService(
            documents, objects, orchestrator, callbacks, http, integration, render
        )

        orchestrator.add_completion_hook(exports.handle_render_complete)
        orchestrator.add_completion_hook(integration_service.handle_render_complete)
        orchestrator.add_failure_hook(exports.handle_render_failed)
        orchestrator.add_failure_hook(integration_service.handle_render_failed)

        if not integration.signing_secret:
            logger.warning("INTEGRATION_JWT_SECRET is not set; callback signatures use an empty key.")

        return cls(
            documents=documents,
            objects=objects,
            http=http,
            worker_config=worker,
            integration_config=integration,
            orchestrator=orchestrator,
            exports=exports,
            integration=integration_service,
            transcripts=TranscriptService(documents),
        )

    def close(self) -> None:
        if self.closed:
            return
        self.http.close()
        self.documents.close()
        self.closed = True
        logger.info("Service context closed")


def get_context(request: Request) -> ServiceContext:
    """FastAPI dependency returning the application's service context."""
    return request.app.state.context
