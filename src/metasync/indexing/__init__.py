"""Metadata indexing pipeline.

Streams AVU metadata out of Postgres, folds each object's AVUs into one
document and keeps the search index in step with the database.

Components:
    - AVUStore: Recursive AVU queries and the streaming object cursor
    - ObjectCursor: Groups ordered AVU rows into per-object bundles
    - build_document: Turns a bundle into an index document
    - BulkWriteBuffer: Batches index mutations into bulk requests
    - Synchronizer: Purge, rebuild, reindex and single-object updates
    - ModeDispatcher: Runs the synchronizer for the full, periodic or incremental mode

Usage:
    from metasync.clients import ElasticsearchClient, PostgresClient
    from metasync.indexing import AVUStore, Synchronizer

    store = AVUStore(postgres)
    synchronizer = Synchronizer(store, search, settings.indexer)
    await synchronizer.reindex()
"""

from metasync.indexing.bulk import BulkWriteBuffer
from metasync.indexing.cursor import ObjectCursor, group_by_object
from metasync.indexing.dispatcher import ModeDispatcher, events_subject
from metasync.indexing.documents import build_document
from metasync.indexing.store import AVUStore
from metasync.indexing.sync import ReindexResult, Synchronizer

__all__ = [
    "AVUStore",
    "BulkWriteBuffer",
    "ModeDispatcher",
    "ObjectCursor",
    "ReindexResult",
    "Synchronizer",
    "build_document",
    "events_subject",
    "group_by_object",
]
