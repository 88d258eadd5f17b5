"""Bounded buffer of index mutations submitted as bulk requests."""

import asyncio
import logging
import time
from collections import Counter
from typing import Any

from metasync.clients.elasticsearch import ElasticsearchClient
from metasync.models import BulkMutation
from metasync.utils.metrics import record_bulk_flush, record_mutation

logger = logging.getLogger(__name__)


class BulkWriteBuffer:
    """Queue of index mutations flushed in batches of at most ``bulk_size``.

    Adding the ``bulk_size``-th mutation flushes the queue before ``add``
    returns, so no more than ``bulk_size`` mutations are ever pending. A
    failed flush raises to the caller; the batch is dropped, not retried.
    Callers flush explicitly once they have queued their last mutation.

    An internal lock serializes ``add`` and ``flush``, so a batch is never
    submitted twice or interleaved with another.
    """

    def __init__(self, client: ElasticsearchClient, bulk_size: int = 1000) -> None:
        """Initialize the buffer.

        Args:
            client: Search index client used to submit batches.
            bulk_size: Queue length that triggers a flush.
        """
        if bulk_size < 1:
            raise ValueError(f"bulk_size must be at least 1, got {bulk_size}")
        self.client = client
        self.bulk_size = bulk_size
        self._queue: list[BulkMutation] = []
        self._lock = asyncio.Lock()
        self.flushed = 0

    async def add(self, mutation: BulkMutation) -> None:
        """Queue one mutation, flushing if the queue reaches ``bulk_size``.

        Raises:
            SearchIndexError: If the triggered flush fails.
        """
        async with self._lock:
            self._queue.append(mutation)
            record_mutation(mutation.action)

            if len(self._queue) >= self.bulk_size:
                await self._flush()

    async def flush(self) -> int:
        """Submit every queued mutation as one bulk request.

        Returns:
            Number of mutations submitted.

        Raises:
            SearchIndexError: If the bulk request fails.
        """
        async with self._lock:
            return await self._flush()

    async def _flush(self) -> int:
        if not self._queue:
            return 0

        batch = self._queue
        self._queue = []

        logger.info(f"Flushing batch of {len(batch)} mutations")
        start_time = time.perf_counter()
        try:
            response = await self.client.bulk(batch)
        except Exception:
            record_bulk_flush(False, time.perf_counter() - start_time, {})
            raise

        failed = self._failed_items(response)
        record_bulk_flush(True, time.perf_counter() - start_time, failed)
        if failed:
            logger.warning(
                "Bulk request completed with rejected items: "
                + ", ".join(f"{count} {action}" for action, count in failed.items())
            )

        self.flushed += len(batch)
        return len(batch)

    @staticmethod
    def _failed_items(response: dict[str, Any]) -> dict[str, int]:
        """Count rejected items by action; deleting a missing document is not a failure."""
        if not response.get("errors"):
            return {}

        failed: Counter[str] = Counter()
        for item in response.get("items", []):
            for action, result in item.items():
                if "error" not in result:
                    continue
                if action == "delete" and result.get("status") == 404:
                    continue
                failed[action] += 1
                logger.debug(f"Bulk {action} of {result.get('_id')} failed: {result['error']}")
        return dict(failed)

    @property
    def queue_size(self) -> int:
        """Number of mutations waiting to be flushed."""
        return len(self._queue)
