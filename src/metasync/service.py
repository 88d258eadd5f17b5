"""Component wiring and process lifecycle for each operating mode."""

import asyncio
import signal

from metasync.clients import ElasticsearchClient, NatsClient, PostgresClient
from metasync.config import Settings
from metasync.indexing import AVUStore, ModeDispatcher, ReindexResult, Synchronizer
from metasync.models import Mode
from metasync.utils.logging import get_logger
from metasync.utils.metrics import start_metrics_server

logger = get_logger(__name__)


class MetasyncService:
    """Owns the client connections and the dispatcher for one mode.

    Every component gets its settings section from the single ``Settings``
    instance passed in here.
    """

    def __init__(self, settings: Settings, mode: Mode) -> None:
        """Initialize the service.

        Args:
            settings: Validated application settings.
            mode: Operating mode to run.
        """
        self.settings = settings
        self.mode = mode
        self.postgres = PostgresClient(settings.database)
        self.search = ElasticsearchClient(settings.elasticsearch)
        # Full mode never touches the broker
        self.broker = NatsClient(settings.broker) if mode is not Mode.FULL else None

        self.synchronizer = Synchronizer(AVUStore(self.postgres), self.search, settings.indexer)
        self.dispatcher = ModeDispatcher(mode, self.synchronizer, self.broker, settings.broker)

    async def start(self) -> None:
        """Connect to the database, the search index and (if used) the broker.

        Creates the search index if it does not exist yet.
        """
        logger.info(f"Starting metasync in {self.mode.value} mode")
        await self.postgres.connect()
        await self.search.connect()
        await self.search.ensure_index()
        if self.broker is not None:
            await self.broker.connect()

    async def stop(self) -> None:
        """Close every connection; a failure closing one does not skip the rest."""
        logger.info("Shutting down metasync...")

        if self.broker is not None:
            try:
                await self.broker.close()
            except Exception as e:
                logger.error(f"Error closing NATS client: {e}")

        try:
            await self.search.close()
        except Exception as e:
            logger.error(f"Error closing Elasticsearch client: {e}")

        try:
            await self.postgres.close()
        except Exception as e:
            logger.error(f"Error closing Postgres pool: {e}")

        logger.info("metasync shutdown complete")

    async def run(self) -> ReindexResult | None:
        """Run the mode to completion (full) or until cancelled (periodic, incremental)."""
        try:
            await self.start()
            return await self.dispatcher.run()
        finally:
            await self.stop()


async def run_service(settings: Settings, mode: Mode) -> ReindexResult | None:
    """Run a mode, cancelling it cleanly on SIGINT or SIGTERM.

    The metrics server is started on the debug port for the long-running
    modes.

    Returns:
        The reindex result in full mode, otherwise None.
    """
    if mode is not Mode.FULL:
        start_metrics_server(settings.debug_port)
        logger.info(f"Serving metrics on port {settings.debug_port}")

    service = MetasyncService(settings, mode)
    task = asyncio.create_task(service.run())

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, task.cancel)

    try:
        return await task
    except asyncio.CancelledError:
        logger.info("Received shutdown signal")
        return None
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
