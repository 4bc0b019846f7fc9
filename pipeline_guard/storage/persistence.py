"""
Document Persistence.

Whole-document store used for budget state, cost documents, quality
decisions and the review queue. Documents are addressed by a collection
path (e.g. "pipelines/2026-01-22") and a document ID, and every write
replaces the stored value.
"""

import asyncio
import copy
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import structlog

from pipeline_guard.core.errors import ErrorCode, PipelineError

logger = structlog.get_logger(__name__)


class Persistence(ABC):
    """Abstract base class for document stores."""

    @abstractmethod
    async def get_document(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Load a document, or None when it does not exist."""
        pass

    @abstractmethod
    async def set_document(self, collection: str, doc_id: str, value: dict[str, Any]) -> None:
        """Store a document, replacing any existing value."""
        pass

    @abstractmethod
    async def delete_document(self, collection: str, doc_id: str) -> bool:
        """Delete a document. Returns True when something was removed."""
        pass

    @abstractmethod
    async def list_documents(self, collection: str) -> list[dict[str, Any]]:
        """List all documents directly inside a collection."""
        pass


class InMemoryPersistence(Persistence):
    """In-memory document store. Values are deep-copied on read and write."""

    def __init__(self):
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def get_document(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        async with self._lock:
            doc = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    async def set_document(self, collection: str, doc_id: str, value: dict[str, Any]) -> None:
        async with self._lock:
            self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(value)

    async def delete_document(self, collection: str, doc_id: str) -> bool:
        async with self._lock:
            docs = self._collections.get(collection, {})
            if doc_id in docs:
                del docs[doc_id]
                return True
            return False

    async def list_documents(self, collection: str) -> list[dict[str, Any]]:
        async with self._lock:
            return [copy.deepcopy(d) for d in self._collections.get(collection, {}).values()]


class FilePersistence(Persistence):
    """
    File-based document store.

    Stores each document as a JSON file under <root>/<collection>/<doc_id>.json.
    Suitable for persistence across restarts on a single host.
    """

    def __init__(self, directory: str | Path):
        self._root = Path(directory)
        self._root.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    def _collection_dir(self, collection: str) -> Path:
        parts = [p for p in collection.split("/") if p]
        if not parts or any(p in (".", "..") for p in parts):
            raise PipelineError.critical(
                ErrorCode.VALIDATION_ERROR,
                f"Invalid collection path: {collection!r}",
            )
        return self._root.joinpath(*parts)

    def _doc_path(self, collection: str, doc_id: str) -> Path:
        if not doc_id or "/" in doc_id or doc_id in (".", ".."):
            raise PipelineError.critical(
                ErrorCode.VALIDATION_ERROR,
                f"Invalid document id: {doc_id!r}",
            )
        return self._collection_dir(collection) / f"{doc_id}.json"

    async def get_document(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        path = self._doc_path(collection, doc_id)
        async with self._lock:
            if not path.exists():
                return None
            try:
                with open(path, "r", encoding="utf-8") as f:
                    return json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise PipelineError.retryable_error(
                    ErrorCode.STORAGE_READ_FAILED,
                    f"Failed to read document {collection}/{doc_id}: {e}",
                ) from e

    async def set_document(self, collection: str, doc_id: str, value: dict[str, Any]) -> None:
        path = self._doc_path(collection, doc_id)
        async with self._lock:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                tmp_path = path.with_suffix(".json.tmp")
                with open(tmp_path, "w", encoding="utf-8") as f:
                    json.dump(value, f, ensure_ascii=False, indent=2, default=str)
                tmp_path.replace(path)
            except OSError as e:
                raise PipelineError.retryable_error(
                    ErrorCode.STORAGE_WRITE_FAILED,
                    f"Failed to write document {collection}/{doc_id}: {e}",
                ) from e

    async def delete_document(self, collection: str, doc_id: str) -> bool:
        path = self._doc_path(collection, doc_id)
        async with self._lock:
            if path.exists():
                path.unlink()
                return True
            return False

    async def list_documents(self, collection: str) -> list[dict[str, Any]]:
        directory = self._collection_dir(collection)
        documents = []
        async with self._lock:
            if not directory.exists():
                return documents
            for path in sorted(directory.glob("*.json")):
                try:
                    with open(path, "r", encoding="utf-8") as f:
                        documents.append(json.load(f))
                except (OSError, json.JSONDecodeError) as e:
                    logger.warning("Failed to read document", path=str(path), error=str(e))
        return documents
