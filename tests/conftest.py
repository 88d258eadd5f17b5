"""Pytest configuration and shared fixtures."""

from collections.abc import AsyncIterator, Sequence
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from metasync.indexing.cursor import ObjectCursor
from metasync.models import AVURecord, BulkMutation


def make_avu(
    avu_id: str,
    target_id: str,
    target_type: str = "folder",
    attribute: str = "attr",
    value: str = "value",
    unit: str = "",
    object_id: str | None = None,
) -> AVURecord:
    """Build an AVU record with sensible defaults."""
    return AVURecord(
        id=avu_id,
        attribute=attribute,
        value=value,
        unit=unit,
        target_id=target_id,
        target_type=target_type,
        created_by="ipcdev",
        modified_by="ipcdev",
        object_id=object_id or "",
    )


class FakeAVUStore:
    """In-memory stand-in for AVUStore holding a flat avus table."""

    def __init__(self, rows: Sequence[AVURecord] = ()) -> None:
        self.rows: list[AVURecord] = list(rows)
        self.cursors: list[ObjectCursor] = []

    def _resolve(self, roots: list[AVURecord]) -> list[AVURecord]:
        # Same shape as the recursive query: root rows, then descendants by depth
        resolved: list[tuple[str, int, str, AVURecord]] = []
        for root in roots:
            frontier = [root]
            depth = 0
            while frontier:
                for avu in frontier:
                    row = avu.model_copy(update={"object_id": root.target_id})
                    resolved.append((root.target_id, depth, avu.id, row))
                ids = {avu.id for avu in frontier}
                frontier = [r for r in self.rows if r.is_nested and r.target_id in ids]
                depth += 1
        resolved.sort(key=lambda item: item[:3])
        return [item[3] for item in resolved]

    async def get_object_avus(self, object_id: str) -> list[AVURecord]:
        roots = [r for r in self.rows if not r.is_nested and r.target_id == object_id]
        return self._resolve(roots)

    async def stream_all_objects(self) -> ObjectCursor:
        rows = self._resolve([r for r in self.rows if not r.is_nested])

        async def generate() -> AsyncIterator[AVURecord]:
            for row in rows:
                yield row

        cursor = ObjectCursor(generate(), on_close=AsyncMock())
        self.cursors.append(cursor)
        return cursor


class FakeSearchIndex:
    """In-memory stand-in for ElasticsearchClient."""

    def __init__(self) -> None:
        self.documents: dict[str, dict[str, Any]] = {}
        self.bulk_batches: list[list[BulkMutation]] = []
        self.deleted: list[str] = []

    async def bulk(self, mutations: Sequence[BulkMutation]) -> dict[str, Any]:
        self.bulk_batches.append(list(mutations))
        items = []
        for mutation in mutations:
            if mutation.action == "index":
                self.documents[mutation.id] = mutation.document
                items.append({"index": {"_id": mutation.id, "status": 200}})
            else:
                found = self.documents.pop(mutation.id, None) is not None
                items.append({"delete": {"_id": mutation.id, "status": 200 if found else 404}})
        return {"errors": False, "items": items}

    async def scroll_ids(self, doc_type: str) -> AsyncIterator[str]:
        for doc_id, doc in list(self.documents.items()):
            if doc["doc_type"] == doc_type:
                yield doc_id

    async def index_document(self, doc_id: str, document: dict[str, Any]) -> None:
        self.documents[doc_id] = document

    async def delete_document(self, doc_id: str) -> bool:
        self.deleted.append(doc_id)
        return self.documents.pop(doc_id, None) is not None


def make_message(
    subject: str,
    data: bytes = b"",
    num_delivered: int = 1,
) -> MagicMock:
    """Build a mock JetStream message."""
    msg = MagicMock()
    msg.subject = subject
    msg.data = data
    msg.metadata.num_delivered = num_delivered
    msg.ack = AsyncMock()
    msg.nak = AsyncMock()
    msg.term = AsyncMock()
    return msg


@pytest.fixture
def fake_store() -> FakeAVUStore:
    """Empty in-memory AVU store."""
    return FakeAVUStore()


@pytest.fixture
def fake_index() -> FakeSearchIndex:
    """Empty in-memory search index."""
    return FakeSearchIndex()
