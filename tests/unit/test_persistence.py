"""
Unit Tests for Document Persistence.

Tests the in-memory and file-based document stores.
"""

import pytest

from pipeline_guard.core.errors import PipelineError
from pipeline_guard.storage.persistence import FilePersistence, InMemoryPersistence


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryPersistence()
    return FilePersistence(tmp_path / "store")


class TestPersistence:
    """Behaviour shared by every backend."""

    @pytest.mark.asyncio
    async def test_missing_document(self, store) -> None:
        assert await store.get_document("budget", "current") is None

    @pytest.mark.asyncio
    async def test_set_replaces_whole_document(self, store) -> None:
        await store.set_document("pipelines/2026-01-22", "costs", {"total": 0.4, "tts": 0.1})
        await store.set_document("pipelines/2026-01-22", "costs", {"total": 0.5})

        assert await store.get_document("pipelines/2026-01-22", "costs") == {"total": 0.5}

    @pytest.mark.asyncio
    async def test_returned_documents_are_copies(self, store) -> None:
        """Test that mutating a loaded document does not change the store."""
        await store.set_document("budget", "current", {"stages": {"tts": 0.1}})

        doc = await store.get_document("budget", "current")
        doc["stages"]["tts"] = 99.0

        assert (await store.get_document("budget", "current"))["stages"]["tts"] == 0.1

    @pytest.mark.asyncio
    async def test_delete(self, store) -> None:
        await store.set_document("budget", "current", {"a": 1})

        assert await store.delete_document("budget", "current")
        assert not await store.delete_document("budget", "current")
        assert await store.get_document("budget", "current") is None

    @pytest.mark.asyncio
    async def test_list_documents_is_not_recursive(self, store) -> None:
        """Test that nested collections are not listed with their parent."""
        await store.set_document("budget", "current", {"id": "current"})
        await store.set_document("budget", "alerts", {"id": "alerts"})
        await store.set_document("budget/history", "2026-01", {"id": "2026-01"})

        docs = await store.list_documents("budget")

        assert sorted(d["id"] for d in docs) == ["alerts", "current"]
        assert await store.list_documents("review-queue") == []


class TestFilePersistence:
    """Test cases specific to FilePersistence."""

    @pytest.mark.asyncio
    async def test_survives_new_instance(self, tmp_path) -> None:
        """Test that documents persist across store instances."""
        await FilePersistence(tmp_path).set_document("budget", "current", {"remaining_usd": 285.5})

        doc = await FilePersistence(tmp_path).get_document("budget", "current")

        assert doc == {"remaining_usd": 285.5}
        assert (tmp_path / "budget" / "current.json").exists()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "collection,doc_id",
        [("../outside", "x"), ("budget", "../x"), ("", "x"), ("budget", "")],
    )
    async def test_path_traversal_rejected(self, tmp_path, collection: str, doc_id: str) -> None:
        with pytest.raises(PipelineError) as exc_info:
            await FilePersistence(tmp_path).set_document(collection, doc_id, {})

        assert exc_info.value.code == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_corrupt_document_is_retryable_read_error(self, tmp_path) -> None:
        store = FilePersistence(tmp_path)
        (tmp_path / "budget").mkdir()
        (tmp_path / "budget" / "current.json").write_text("{not json", encoding="utf-8")

        with pytest.raises(PipelineError) as exc_info:
            await store.get_document("budget", "current")

        assert exc_info.value.code == "STORAGE_READ_FAILED"
        assert exc_info.value.recoverable
