"""Document store adapters.

Services talk to persistence through :class:`DocumentStore`, a small subset
of the MongoDB collection API: equality filters (plus ``$lt``/``$lte``/``$gt``
/``$gte``/``$ne``/``$in`` comparisons) and ``$set``/``$push``/``$inc``/
``$unset`` updates. Identifiers are always exposed as strings.

Two implementations are provided: :class:`MongoDocumentStore` backed by
``pymongo`` and :class:`InMemoryDocumentStore` for local runs and tests.
"""

from __future__ import annotations

import copy
import threading
import uuid
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from bson import ObjectId
from pymongo import MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError

from caption_pipeline.utils.logging_config import get_logger

logger = get_logger(__name__)

Document = dict[str, Any]
SortSpec = Sequence[tuple[str, int]]

ASCENDING = 1
DESCENDING = -1


class DuplicateDocumentError(Exception):
    """Raised when an insert collides with an existing ``_id``."""


class DocumentStore(Protocol):
    """Minimal collection API used by the pipeline services."""

    def find_one(self, collection: str, query: Mapping[str, Any]) -> Document | None: ...

    def find(
        self,
        collection: str,
        query: Mapping[str, Any],
        *,
        sort: SortSpec | None = None,
        limit: int = 0,
    ) -> list[Document]: ...

    def insert_one(self, collection: str, document: Mapping[str, Any]) -> str: ...

    def update_one(
        self, collection: str, query: Mapping[str, Any], update: Mapping[str, Any]
    ) -> int: ...

    def find_one_and_update(
        self, collection: str, query: Mapping[str, Any], update: Mapping[str, Any]
    ) -> Document | None: ...

    def delete_one(self, collection: str, query: Mapping[str, Any]) -> int: ...

    def close(self) -> None: ...


_COMPARATORS = {
    "$lt": lambda value, operand: value is not None and value < operand,
    "$lte": lambda value, operand: value is not None and value <= operand,
    "$gt": lambda value, operand: value is not None and value > operand,
    "$gte": lambda value, operand: value is not None and value >= operand,
    "$ne": lambda value, operand: value != operand,
    "$in": lambda value, operand: value in operand,
}


def _matches(document: Mapping[str, Any], query: Mapping[str, Any]) -> bool:
    for key, expected in query.items():
        actual = document.get(key)
        if isinstance(expected, Mapping) and expected and all(k.startswith("$") for k in expected):
            for operator, operand in expected.items():
                if operator not in _COMPARATORS:
                    raise ValueError(f"Unsupported query operator: {operator}")
                if not _COMPARATORS[operator](actual, operand):
                    return False
        elif actual != expected:
            return False
    return True


def _apply_update(document: Document, update: Mapping[str, Any]) -> None:
    for operator, fields in update.items():
        if operator == "$set":
            for key, value in fields.items():
                document[key] = copy.deepcopy(value)
        elif operator == "$unset":
            for key in fields:
                document.pop(key, None)
        elif operator == "$inc":
            for key, amount in fields.items():
                document[key] = document.get(key, 0) + amount
        elif operator == "$push":
            for key, value in fields.items():
                document.setdefault(key, []).append(copy.deepcopy(value))
        else:
            raise ValueError(f"Unsupported update operator: {operator}")


def _sort_key(field: str):
    def key(document: Mapping[str, Any]) -> tuple[bool, Any]:
        value = document.get(field)
        return (value is not None, value)

    return key


class InMemoryDocumentStore:
    """Thread-safe, process-local implementation of :class:`DocumentStore`.

    Documents are deep-copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self) -> None:
        self._collections: dict[str, list[Document]] = {}
        self._lock = threading.RLock()

    def _docs(self, collection: str) -> list[Document]:
        return self._collections.setdefault(collection, [])

    def find_one(self, collection: str, query: Mapping[str, Any]) -> Document | None:
        with self._lock:
            for document in self._docs(collection):
                if _matches(document, query):
                    return copy.deepcopy(document)
        return None

    def find(
        self,
        collection: str,
        query: Mapping[str, Any],
        *,
        sort: SortSpec | None = None,
        limit: int = 0,
    ) -> list[Document]:
        with self._lock:
            found = [copy.deepcopy(d) for d in self._docs(collection) if _matches(d, query)]
        for field, direction in reversed(list(sort or [])):
            found.sort(key=_sort_key(field), reverse=direction == DESCENDING)
        return found[:limit] if limit else found

    def insert_one(self, collection: str, document: Mapping[str, Any]) -> str:
        stored = copy.deepcopy(dict(document))
        stored.setdefault("_id", uuid.uuid4().hex[:24])
        stored["_id"] = str(stored["_id"])
        with self._lock:
            docs = self._docs(collection)
            if any(existing["_id"] == stored["_id"] for existing in docs):
                raise DuplicateDocumentError(f"Duplicate _id in {collection}: {stored['_id']}")
            docs.append(stored)
        return stored["_id"]

    def update_one(
        self, collection: str, query: Mapping[str, Any], update: Mapping[str, Any]
    ) -> int:
        with self._lock:
            for document in self._docs(collection):
                if _matches(document, query):
                    _apply_update(document, update)
                    return 1
        return 0

    def find_one_and_update(
        self, collection: str, query: Mapping[str, Any], update: Mapping[str, Any]
    ) -> Document | None:
        with self._lock:
            for document in self._docs(collection):
                if _matches(document, query):
                    _apply_update(document, update)
                    return copy.deepcopy(document)
        return None

    def delete_one(self, collection: str, query: Mapping[str, Any]) -> int:
        with self._lock:
            docs = self._docs(collection)
            for index, document in enumerate(docs):
                if _matches(document, query):
                    del docs[index]
                    return 1
        return 0

    def close(self) -> None:
        logger.debug("In-memory document store closed")


def _to_object_id(value: Any) -> Any:
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return value


def _query_for_mongo(query: Mapping[str, Any]) -> dict[str, Any]:
    prepared = dict(query)
    if "_id" in prepared:
        raw = prepared["_id"]
        if isinstance(raw, Mapping):
            prepared["_id"] = {
                op: [_to_object_id(v) for v in operand] if op == "$in" else _to_object_id(operand)
                for op, operand in raw.items()
            }
        else:
            prepared["_id"] = _to_object_id(raw)
    return prepared


def _from_mongo(document: Mapping[str, Any] | None) -> Document | None:
    if document is None:
        return None
    result = dict(document)
    if "_id" in result:
        result["_id"] = str(result["_id"])
    return result


class MongoDocumentStore:
    """``pymongo``-backed :class:`DocumentStore`.

    String ids that look like ObjectIds are converted on the way in, and all
    ids are stringified on the way out.
    """

    def __init__(self, uri: str, database: str, *, client: MongoClient | None = None) -> None:
        self._client = client if client is not None else MongoClient(uri, tz_aware=True)
        self._db = self._client[database]
        logger.info("Connected to MongoDB database=%s", database)

    def find_one(self, collection: str, query: Mapping[str, Any]) -> Document | None:
        return _from_mongo(self._db[collection].find_one(_query_for_mongo(query)))

    def find(
        self,
        collection: str,
        query: Mapping[str, Any],
        *,
        sort: SortSpec | None = None,
        limit: int = 0,
    ) -> list[Document]:
        cursor = self._db[collection].find(_query_for_mongo(query))
        if sort:
            cursor = cursor.sort(list(sort))
        if limit:
            cursor = cursor.limit(limit)
        return [_from_mongo(document) for document in cursor]

    def insert_one(self, collection: str, document: Mapping[str, Any]) -> str:
        try:
            prepared = dict(document)
            if "_id" in prepared:
                prepared["_id"] = _to_object_id(prepared["_id"])
            result = self._db[collection].insert_one(prepared)
        except DuplicateKeyError as exc:
            raise DuplicateDocumentError(str(exc)) from exc
        return str(result.inserted_id)

    def update_one(
        self, collection: str, query: Mapping[str, Any], update: Mapping[str, Any]
    ) -> int:
        result = self._db[collection].update_one(_query_for_mongo(query), dict(update))
        return result.matched_count

    def find_one_and_update(
        self, collection: str, query: Mapping[str, Any], update: Mapping[str, Any]
    ) -> Document | None:
        document = self._db[collection].find_one_and_update(
            _query_for_mongo(query),
            dict(update),
            return_document=ReturnDocument.AFTER,
        )
        return _from_mongo(document)

    def delete_one(self, collection: str, query: Mapping[str, Any]) -> int:
        return self._db[collection].delete_one(_query_for_mongo(query)).deleted_count

    def close(self) -> None:
        self._client.close()
        logger.info("MongoDB connection closed")
