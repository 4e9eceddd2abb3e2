"""Unit tests for the document and object storage adapters."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
from bson import ObjectId
from botocore.exceptions import ClientError

from caption_pipeline.errors import StorageError
from caption_pipeline.storage.documents import (
    DESCENDING,
    DuplicateDocumentError,
    InMemoryDocumentStore,
    _query_for_mongo,
)
from caption_pipeline.storage.objects import LocalObjectStorage, S3ObjectStorage


@pytest.fixture
def store() -> InMemoryDocumentStore:
    store = InMemoryDocumentStore()
    store.insert_one("jobs", {"_id": "a", "status": "queued", "attempts": 1, "rank": 3})
    store.insert_one("jobs", {"_id": "b", "status": "failed", "attempts": 3, "rank": 1})
    store.insert_one("jobs", {"_id": "c", "status": "queued", "rank": 2})
    return store


def test_in_memory_find__comparison_operators(store: InMemoryDocumentStore) -> None:
    assert [d["_id"] for d in store.find("jobs", {"attempts": {"$gte": 2}})] == ["b"]
    assert [d["_id"] for d in store.find("jobs", {"attempts": {"$lt": 3}})] == ["a"]
    assert [d["_id"] for d in store.find("jobs", {"status": {"$ne": "queued"}})] == ["b"]
    assert [d["_id"] for d in store.find("jobs", {"_id": {"$in": ["a", "c"]}})] == ["a", "c"]


def test_in_memory_find__sort_and_limit(store: InMemoryDocumentStore) -> None:
    found = store.find("jobs", {}, sort=[("rank", DESCENDING)], limit=2)

    assert [d["_id"] for d in found] == ["a", "c"]


def test_in_memory_update__operators(store: InMemoryDocumentStore) -> None:
    matched = store.update_one(
        "jobs",
        {"_id": "c"},
        {
            "$set": {"status": "exported"},
            "$inc": {"attempts": 1},
            "$push": {"history": {"status": "exported"}},
            "$unset": {"rank": ""},
        },
    )

    assert matched == 1
    assert store.find_one("jobs", {"_id": "c"}) == {
        "_id": "c",
        "status": "exported",
        "attempts": 1,
        "history": [{"status": "exported"}],
    }
    assert store.update_one("jobs", {"_id": "missing"}, {"$set": {"x": 1}}) == 0


def test_in_memory_store__copies_documents(store: InMemoryDocumentStore) -> None:
    document = store.find_one("jobs", {"_id": "a"})
    document["status"] = "tampered"

    assert store.find_one("jobs", {"_id": "a"})["status"] == "queued"


def test_in_memory_store__duplicate_and_unknown_operator(store: InMemoryDocumentStore) -> None:
    with pytest.raises(DuplicateDocumentError):
        store.insert_one("jobs", {"_id": "a"})
    with pytest.raises(ValueError):
        store.find("jobs", {"rank": {"$regex": "x"}})
    with pytest.raises(ValueError):
        store.update_one("jobs", {"_id": "a"}, {"$rename": {"rank": "order"}})


def test_find_one_and_update__single_winner(store: InMemoryDocumentStore) -> None:
    claimed = store.find_one_and_update(
        "jobs", {"_id": "a", "status": "queued"}, {"$set": {"status": "claimed"}}
    )
    second = store.find_one_and_update(
        "jobs", {"_id": "a", "status": "queued"}, {"$set": {"status": "claimed"}}
    )

    assert claimed["status"] == "claimed"
    assert second is None
    assert store.delete_one("jobs", {"_id": "a"}) == 1
    assert store.find_one("jobs", {"_id": "a"}) is None


def test_query_for_mongo__converts_object_ids() -> None:
    oid = "65a1b2c3d4e5f60718293a4b"

    assert _query_for_mongo({"_id": oid, "user_id": oid}) == {"_id": ObjectId(oid), "user_id": oid}
    assert _query_for_mongo({"_id": {"$in": [oid, "plain-id"]}}) == {
        "_id": {"$in": [ObjectId(oid), "plain-id"]}
    }


def test_local_storage__writes_file_and_public_url(tmp_path: Path) -> None:
    storage = LocalObjectStorage(tmp_path, "https://cdn.test/")

    stored = storage.upload_file("/captions/user 1/job.ass", b"[Script Info]", "text/x-ass")

    assert stored.path == "captions/user 1/job.ass"
    assert stored.url == "https://cdn.test/captions/user%201/job.ass"
    assert (tmp_path / "captions" / "user 1" / "job.ass").read_bytes() == b"[Script Info]"


def test_local_storage__file_url_without_base(tmp_path: Path) -> None:
    storage = LocalObjectStorage(tmp_path)

    assert storage.get_public_url("renders/out.mp4") == (tmp_path / "renders" / "out.mp4").resolve().as_uri()


@pytest.mark.parametrize("key", ["../escape.ass", "captions/../../x", "", "a//b"])
def test_local_storage__rejects_bad_keys(tmp_path: Path, key: str) -> None:
    storage = LocalObjectStorage(tmp_path)

    with pytest.raises(StorageError) as excinfo:
        storage.upload_file(key, b"x")

    assert excinfo.value.code == "invalid_object_key"


class _FakeS3Client:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[dict[str, Any]] = []

    def put_object(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return {}


def test_s3_storage__uploads_with_content_type() -> None:
    client = _FakeS3Client()
    storage = S3ObjectStorage("bucket", region="eu-west-1", client=client)

    stored = storage.upload_file("renders/out.mp4", b"video", "video/mp4")

    assert client.calls == [
        {"Bucket": "bucket", "Key": "renders/out.mp4", "Body": b"video", "ContentType": "video/mp4"}
    ]
    assert stored.url == "https://bucket.s3.eu-west-1.amazonaws.com/renders/out.mp4"


def test_s3_storage__client_error_becomes_storage_error() -> None:
    error = ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")
    storage = S3ObjectStorage("bucket", public_base_url="https://cdn.test", client=_FakeS3Client(error))

    with pytest.raises(StorageError) as excinfo:
        storage.upload_file("captions/job.ass", b"x")

    assert excinfo.value.code == "storage_upload_failed"
    assert storage.get_public_url("captions/job.ass") == "https://cdn.test/captions/job.ass"
