"""Persistence adapters: document store and object storage."""

from caption_pipeline.storage.documents import (
    DocumentStore,
    DuplicateDocumentError,
    InMemoryDocumentStore,
    MongoDocumentStore,
)
from caption_pipeline.storage.objects import (
    LocalObjectStorage,
    ObjectStorage,
    S3ObjectStorage,
    StoredObject,
)

__all__ = [
    "DocumentStore",
    "DuplicateDocumentError",
    "InMemoryDocumentStore",
    "LocalObjectStorage",
    "MongoDocumentStore",
    "ObjectStorage",
    "S3ObjectStorage",
    "StoredObject",
]
