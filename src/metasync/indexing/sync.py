"""Reconciliation of the search index against the metadata database."""

import logging
from collections.abc import Sequence
from contextlib import aclosing
from dataclasses import dataclass
from typing import Literal

from metasync.clients.elasticsearch import ElasticsearchClient
from metasync.config import IndexerSettings
from metasync.errors import DataIntegrityError, NoMetadataError, SearchIndexError
from metasync.indexing.bulk import BulkWriteBuffer
from metasync.indexing.documents import build_document
from metasync.indexing.store import AVUStore
from metasync.models import INDEXED_TYPES, AVURecord, BulkMutation, IndexedDocument
from metasync.utils.metrics import record_incremental_update, track_phase

logger = logging.getLogger(__name__)

UpdateOutcome = Literal["indexed", "deleted", "skipped", "failed"]


@dataclass
class ReindexResult:
    """Counts from one reindex run."""

    purged: int
    indexed: int


class Synchronizer:
    """Keeps the search index consistent with the AVU store.

    A reindex purges documents whose object has no metadata left, then
    streams every object from the database into the index. Both phases write
    through their own bulk buffer. Single objects can be updated directly,
    without batching.
    """

    def __init__(
        self,
        store: AVUStore,
        search: ElasticsearchClient,
        settings: IndexerSettings | None = None,
    ) -> None:
        """Initialize the synchronizer.

        Args:
            store: AVU record store.
            search: Search index client.
            settings: Indexer settings (bulk size).
        """
        self.store = store
        self.search = search
        self.settings = settings or IndexerSettings()

    def new_buffer(self) -> BulkWriteBuffer:
        """Create a bulk buffer sized from the settings."""
        return BulkWriteBuffer(self.search, bulk_size=self.settings.bulk_size)

    # ==================== Purge ====================

    async def purge_type(self, buffer: BulkWriteBuffer, doc_type: str) -> int:
        """Queue deletes for documents of one type whose object has no AVUs.

        Lookup failures for a single document are logged and skipped; scroll
        and bulk failures raise.

        Returns:
            Number of deletes queued.
        """
        deleted = 0
        async with aclosing(self.search.scroll_ids(doc_type)) as doc_ids:
            async for doc_id in doc_ids:
                try:
                    avus = await self.store.get_object_avus(doc_id)
                except Exception as e:
                    logger.error(f"Error processing {doc_type}/{doc_id}: {e}")
                    continue

                if not avus:
                    logger.info(f"Deleting {doc_type}/{doc_id}")
                    await buffer.add(BulkMutation.delete(doc_type, doc_id))
                    deleted += 1

        logger.info(f"Finished all rows for purge of {doc_type}.")
        return deleted

    @track_phase("purge")
    async def purge_index(self) -> int:
        """Remove documents of every indexed type whose metadata is gone.

        A failure while purging one type is logged and the next type is
        still purged.

        Returns:
            Number of deletes queued.
        """
        buffer = self.new_buffer()
        deleted = 0
        try:
            for doc_type in INDEXED_TYPES:
                try:
                    deleted += await self.purge_type(buffer, doc_type)
                except Exception as e:
                    logger.error(f"Purge of {doc_type} aborted: {e}", exc_info=True)
        finally:
            await self._final_flush(buffer, "purge")
        return deleted

    # ==================== Rebuild ====================

    def _indexable(self, bundle: Sequence[AVURecord]) -> IndexedDocument | None:
        try:
            document = build_document(bundle)
        except (DataIntegrityError, NoMetadataError) as e:
            logger.error(f"Skipping object {bundle[0].object_id if bundle else '?'}: {e}")
            return None

        if not document.is_known_type:
            logger.debug(f"Skipping {document.doc_type}/{document.id}: type is not indexed")
            return None
        return document

    @track_phase("rebuild")
    async def index_everything(self) -> int:
        """Stream every object from the database into the index.

        Failing to open the stream raises. Once streaming, a broken read or a
        failed bulk request ends the run early; the next reindex repairs
        whatever was missed.

        Returns:
            Number of documents queued for indexing.
        """
        buffer = self.new_buffer()
        cursor = await self.store.stream_all_objects()
        indexed = 0

        try:
            async with cursor:
                try:
                    async for bundle in cursor:
                        document = self._indexable(bundle)
                        if document is None:
                            continue

                        logger.info(f"Indexing {document.doc_type}/{document.id}")
                        await buffer.add(BulkMutation.upsert(document))
                        indexed += 1
                except Exception as e:
                    logger.error(f"Rebuild aborted after {indexed} objects: {e}", exc_info=True)
        finally:
            await self._final_flush(buffer, "rebuild")

        return indexed

    async def _final_flush(self, buffer: BulkWriteBuffer, phase: str) -> None:
        try:
            await buffer.flush()
        except SearchIndexError as e:
            logger.error(f"Final {phase} flush failed: {e}")

    # ==================== Reindex ====================

    @track_phase("reindex")
    async def reindex(self) -> ReindexResult:
        """Purge stale documents, then rebuild the index from the database.

        Purging first means documents the rebuild writes are never removed by
        a purge of the same run.
        """
        logger.info("Starting reindex")
        purged = await self.purge_index()
        indexed = await self.index_everything()
        logger.info(f"Reindex finished: {purged} documents purged, {indexed} indexed")
        return ReindexResult(purged=purged, indexed=indexed)

    # ==================== Single object ====================

    async def delete_one(self, object_id: str) -> UpdateOutcome:
        """Delete an object's document; a missing document counts as deleted."""
        logger.info(f"Deleting metadata for {object_id}")
        try:
            found = await self.search.delete_document(object_id)
        except SearchIndexError as e:
            logger.error(f"Error deleting metadata for {object_id}: {e}")
            return "failed"

        if not found:
            logger.debug(f"No indexed metadata for {object_id}")
        return "deleted"

    async def index_one(self, object_id: str) -> UpdateOutcome:
        """Bring one object's document in line with the database.

        Never raises: failures are logged and reported as ``failed``.
        """
        outcome = await self._index_one(object_id)
        record_incremental_update(outcome)
        return outcome

    async def _index_one(self, object_id: str) -> UpdateOutcome:
        try:
            avus = await self.store.get_object_avus(object_id)
        except Exception as e:
            logger.error(f"Error reading metadata for {object_id}: {e}")
            return "failed"

        try:
            document = build_document(avus)
        except NoMetadataError:
            return await self.delete_one(object_id)
        except DataIntegrityError as e:
            logger.error(f"Not indexing {object_id}: {e}")
            return "failed"

        if not document.is_known_type:
            logger.info(f"Skipping {document.doc_type}/{document.id}: type is not indexed")
            return "skipped"

        logger.info(f"Indexing {document.doc_type}/{document.id}")
        try:
            await self.search.index_document(document.id, document.to_source())
        except SearchIndexError as e:
            logger.error(f"Error indexing {document.doc_type}/{document.id}: {e}")
            return "failed"
        return "indexed"
