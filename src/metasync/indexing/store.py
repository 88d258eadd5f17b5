"""AVU record store: recursive metadata queries against Postgres."""

import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any

import asyncpg

from metasync.clients.postgres import PostgresClient
from metasync.errors import AmbiguousAVUError, AVUNotFoundError
from metasync.indexing.cursor import ObjectCursor
from metasync.models import AVURecord

logger = logging.getLogger(__name__)

_AVU_COLUMNS = """
       cast(id AS varchar) AS id,
       coalesce(attribute, '') AS attribute,
       coalesce(value, '') AS value,
       coalesce(unit, '') AS unit,
       cast(target_id AS varchar) AS target_id,
       cast(target_type AS varchar) AS target_type,
       coalesce(created_by, '') AS created_by,
       coalesce(modified_by, '') AS modified_by,
       created_on,
       modified_on"""

# Base rows are root AVUs (describing a file, folder or other object); the
# recursive step pulls in AVUs attached to already collected AVUs. Every row
# keeps its own target and carries its root object's id, so rows come out
# clustered by object, root AVUs first.
_RECURSIVE_AVUS = """
WITH RECURSIVE all_avus AS (
    SELECT id, attribute, value, unit, target_id, target_type,
           created_by, modified_by, created_on, modified_on,
           target_id AS object_id, 0 AS depth
      FROM {schema}.avus
     WHERE target_type <> 'avu'{condition}
    UNION ALL
    SELECT avus.id, avus.attribute, avus.value, avus.unit, avus.target_id, avus.target_type,
           avus.created_by, avus.modified_by, avus.created_on, avus.modified_on,
           aa.object_id, aa.depth + 1
      FROM {schema}.avus
      JOIN all_avus aa ON avus.target_id = aa.id AND avus.target_type = 'avu'
)
SELECT {columns},
       cast(object_id AS varchar) AS object_id
  FROM all_avus
 ORDER BY object_id, depth, id
"""

_SINGLE_AVU = """
SELECT {columns}
  FROM {schema}.avus
 WHERE id = cast($1 AS uuid)
"""


def select_avus(schema: str, condition: str = "") -> str:
    """Build the recursive AVU query, optionally restricting the root rows.

    Args:
        schema: Schema holding the avus table.
        condition: SQL condition on root rows (without WHERE), or "" for all.

    Returns:
        Query text.
    """
    return _RECURSIVE_AVUS.format(
        schema=schema,
        columns=_AVU_COLUMNS,
        condition=f" AND {condition}" if condition else "",
    )


def avu_record_from_row(row: Mapping[str, Any]) -> AVURecord:
    """Convert a result row into an AVURecord."""
    return AVURecord(**dict(row))


class AVUStore:
    """Reads AVU metadata, with nested AVUs resolved, from the metadata database."""

    def __init__(self, db: PostgresClient) -> None:
        """Initialize the store.

        Args:
            db: Connected Postgres client.
        """
        self.db = db
        schema = db.settings.schema_name
        self._single_query = _SINGLE_AVU.format(schema=schema, columns=_AVU_COLUMNS)
        self._object_query = select_avus(schema, "target_id = cast($1 AS uuid)")
        self._all_objects_query = select_avus(schema)

    async def get_avu(self, avu_id: str) -> AVURecord:
        """Fetch exactly one AVU by id.

        Raises:
            AVUNotFoundError: If no AVU has this id.
            AmbiguousAVUError: If more than one row is returned.
        """
        rows = await self.db.pool.fetch(self._single_query, avu_id)
        if not rows:
            raise AVUNotFoundError(f"No AVU with id {avu_id}")
        if len(rows) > 1:
            raise AmbiguousAVUError(f"AVU query for {avu_id} returned {len(rows)} rows")
        return avu_record_from_row(rows[0])

    async def get_object_avus(self, object_id: str) -> list[AVURecord]:
        """Fetch all AVUs, root and nested, for one object.

        Returns:
            The object's AVUs (empty if it has none).
        """
        rows = await self.db.pool.fetch(self._object_query, object_id)
        return [avu_record_from_row(row) for row in rows]

    async def stream_all_objects(self) -> ObjectCursor:
        """Open a forward-only cursor over every object's metadata bundle.

        The query runs in a read-only transaction on a dedicated connection,
        fetching rows in batches of ``cursor_prefetch``. Query and connection
        failures raise here; the returned cursor must be closed.
        """
        pool = self.db.pool
        prefetch = self.db.settings.cursor_prefetch

        conn = await pool.acquire()
        transaction = conn.transaction(readonly=True)
        try:
            await transaction.start()
            cursor = await conn.cursor(self._all_objects_query)
        except BaseException:
            await pool.release(conn)
            raise

        async def release() -> None:
            try:
                await transaction.rollback()
            except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
                logger.warning(f"Failed to end streaming transaction: {e}")
            finally:
                await pool.release(conn)

        return ObjectCursor(self._fetch_records(cursor, prefetch), on_close=release)

    @staticmethod
    async def _fetch_records(cursor: Any, prefetch: int) -> AsyncIterator[AVURecord]:
        while True:
            rows = await cursor.fetch(prefetch)
            if not rows:
                return
            for row in rows:
                yield avu_record_from_row(row)
