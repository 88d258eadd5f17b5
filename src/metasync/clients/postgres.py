"""Async Postgres connection pool wrapper."""

import logging

import asyncpg

from metasync.config import DatabaseSettings

logger = logging.getLogger(__name__)


class PostgresClient:
    """Wrapper around an asyncpg pool with lifecycle management."""

    def __init__(self, settings: DatabaseSettings) -> None:
        """Initialize the Postgres client.

        Args:
            settings: Database section of the application settings.
        """
        self.settings = settings
        self._pool: asyncpg.Pool | None = None

    async def connect(self) -> None:
        """Create the connection pool."""
        if self._pool is not None:
            return

        logger.info(f"Connecting to Postgres (schema: {self.settings.schema_name})")
        self._pool = await asyncpg.create_pool(
            self.settings.uri,
            min_size=self.settings.min_pool_size,
            max_size=self.settings.max_pool_size,
        )
        logger.info("Postgres connection pool created")

    async def close(self) -> None:
        """Close the pool, waiting for acquired connections to be released."""
        if self._pool is not None:
            logger.info("Closing Postgres connection pool")
            await self._pool.close()
            self._pool = None

    @property
    def pool(self) -> asyncpg.Pool:
        """Get the underlying asyncpg pool.

        Raises:
            RuntimeError: If the client is not connected.
        """
        if self._pool is None:
            raise RuntimeError("Postgres client not connected. Call connect() first.")
        return self._pool

    async def __aenter__(self) -> "PostgresClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
