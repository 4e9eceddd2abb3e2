"""Per-upload single-flight marker stored in the document store.

A render holds the marker for ``upload_id`` while it inserts the job row,
checks for reuse and dispatches to the worker. The marker is a document with
``_id = upload_id``; the unique id makes the insert a conditional write. A
marker whose ``expires_at`` has passed belongs to a crashed request and can
be taken over.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

from caption_pipeline.errors import ConflictError
from caption_pipeline.render.models import RENDER_LOCKS
from caption_pipeline.storage.documents import DocumentStore, DuplicateDocumentError
from caption_pipeline.utils.logging_config import get_logger

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RenderLock:
    """Acquire and release per-upload render markers."""

    def __init__(
        self,
        documents: DocumentStore,
        *,
        ttl_sec: int,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.documents = documents
        self.ttl_sec = ttl_sec
        self.clock = clock

    def acquire(self, upload_id: str) -> str:
        """Take the marker for ``upload_id``.

        Returns:
            The owner token needed to release the marker.

        Raises:
            ConflictError: If another live request holds the marker.
        """
        owner = uuid.uuid4().hex
        now = self.clock()
        expires_at = now + timedelta(seconds=self.ttl_sec)
        try:
            self.documents.insert_one(
                RENDER_LOCKS, {"_id": upload_id, "owner": owner, "expires_at": expires_at}
            )
            return owner
        except DuplicateDocumentError:
            pass

        taken = self.documents.find_one_and_update(
            RENDER_LOCKS,
            {"_id": upload_id, "expires_at": {"$lt": now}},
            {"$set": {"owner": owner, "expires_at": expires_at}},
        )
        if taken is None:
            raise ConflictError(
                f"A render is already in progress for upload {upload_id}",
                code="render_in_progress",
            )
        logger.warning("Took over stale render lock for upload %s", upload_id)
        return owner

    def release(self, upload_id: str, owner: str) -> None:
        if not self.documents.delete_one(RENDER_LOCKS, {"_id": upload_id, "owner": owner}):
            logger.warning("Render lock for upload %s was already released or taken over", upload_id)

    @contextmanager
    def hold(self, upload_id: str) -> Iterator[str]:
        owner = self.acquire(upload_id)
        try:
            yield owner
        finally:
            self.release(upload_id, owner)
