"""Streaming grouping of ordered AVU rows into per-object bundles."""

import logging
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable

from metasync.models import AVURecord
from metasync.utils.metrics import record_object_streamed

logger = logging.getLogger(__name__)


async def group_by_object(rows: AsyncIterable[AVURecord]) -> AsyncIterator[list[AVURecord]]:
    """Group a stream of rows ordered by ``object_id`` into one list per object.

    Only the group being built is held in memory. A row with a different
    ``object_id`` than the previous one closes the current group. An empty
    stream yields nothing.

    Args:
        rows: AVU rows, ordered so that each object's rows are adjacent.

    Yields:
        Lists of rows sharing one ``object_id``, in stream order.
    """
    group: list[AVURecord] = []
    current: str | None = None

    async for row in rows:
        if current is not None and row.object_id != current:
            yield group
            group = []
        current = row.object_id
        group.append(row)

    if group:
        yield group


class ObjectCursor:
    """Forward-only, single-pass iterator over object metadata bundles.

    Wraps an ordered row stream and the resource producing it. Iteration ends
    with ``StopAsyncIteration``, never an empty bundle. The cursor cannot be
    restarted; ``close()`` releases the underlying query resource and must be
    called (or the cursor used as an async context manager).
    """

    def __init__(
        self,
        rows: AsyncIterable[AVURecord],
        on_close: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        """Initialize the cursor.

        Args:
            rows: Row stream ordered by object id.
            on_close: Callback releasing the resource behind ``rows``.
        """
        self._groups = group_by_object(rows)
        self._on_close = on_close
        self._exhausted = False
        self._closed = False
        self.objects_read = 0
        self.rows_read = 0

    def __aiter__(self) -> "ObjectCursor":
        return self

    async def __anext__(self) -> list[AVURecord]:
        if self._exhausted or self._closed:
            raise StopAsyncIteration

        try:
            bundle = await anext(self._groups)
        except StopAsyncIteration:
            self._exhausted = True
            if self.objects_read == 0:
                logger.info("No metadata was found in the configured database.")
            else:
                logger.info(
                    f"Finished streaming {self.objects_read} objects ({self.rows_read} rows)"
                )
            raise

        self.objects_read += 1
        self.rows_read += len(bundle)
        record_object_streamed()
        return bundle

    @property
    def exhausted(self) -> bool:
        """Whether the end of the stream has been reached."""
        return self._exhausted

    async def close(self) -> None:
        """Stop iteration and release the underlying resource. Idempotent."""
        if self._closed:
            return
        self._closed = True
        try:
            await self._groups.aclose()
        finally:
            if self._on_close is not None:
                await self._on_close()

    async def __aenter__(self) -> "ObjectCursor":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
