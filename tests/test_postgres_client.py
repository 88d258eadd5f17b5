"""Tests for the Postgres client."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from metasync.clients.postgres import PostgresClient
from metasync.config import DatabaseSettings


class TestPostgresClient:
    """Tests for PostgresClient."""

    @pytest.fixture
    def client(self) -> PostgresClient:
        """Create a PostgresClient instance."""
        return PostgresClient(DatabaseSettings(uri="postgresql://de@db/metadata", max_pool_size=4))

    def test_pool_not_connected(self, client: PostgresClient) -> None:
        """Test using the pool before connect raises."""
        with pytest.raises(RuntimeError, match="not connected"):
            _ = client.pool

    async def test_connect(self, client: PostgresClient) -> None:
        """Test connect creates the pool once."""
        pool = MagicMock()

        with patch(
            "metasync.clients.postgres.asyncpg.create_pool", new=AsyncMock(return_value=pool)
        ) as create_pool:
            await client.connect()
            await client.connect()

        create_pool.assert_awaited_once_with(
            "postgresql://de@db/metadata", min_size=1, max_size=4
        )
        assert client.pool is pool

    async def test_close(self, client: PostgresClient) -> None:
        """Test close closes and forgets the pool."""
        pool = MagicMock()
        pool.close = AsyncMock()
        client._pool = pool

        await client.close()

        pool.close.assert_awaited_once()
        assert client._pool is None

