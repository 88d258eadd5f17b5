"""Mode dispatcher: binds broker triggers to synchronizer operations."""

from nats.aio.msg import Msg
from nats.aio.subscription import Subscription
from pydantic import ValidationError

from metasync.clients.nats import NatsClient, consumer_name, is_redelivered, reject
from metasync.config import BrokerSettings
from metasync.indexing.sync import ReindexResult, Synchronizer
from metasync.models import Mode, Pong, UpdateMessage
from metasync.utils.logging import bind_context, clear_context, get_logger
from metasync.utils.metrics import record_broker_message

logger = get_logger(__name__)


def events_subject(mode: Mode) -> str:
    """Wildcard subject of a mode's liveness channel."""
    return f"events.metasync.{mode.value}.>"


class ModeDispatcher:
    """Runs the synchronizer for one operating mode.

    ``full`` runs a single reindex. ``periodic`` reindexes on every message
    published to the reindex subjects, one run at a time. ``incremental``
    updates the object named by each message, many at a time. Both broker
    modes also answer pings on their liveness channel.
    """

    def __init__(
        self,
        mode: Mode,
        synchronizer: Synchronizer,
        broker: NatsClient | None,
        settings: BrokerSettings | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            mode: Operating mode.
            synchronizer: Synchronizer the handlers call into.
            broker: Broker client; only used by the periodic and incremental modes.
            settings: Broker settings (subjects, concurrency, consumer prefix).
        """
        self.mode = mode
        self.synchronizer = synchronizer
        self.broker = broker
        self.settings = settings or BrokerSettings()

    @property
    def name(self) -> str:
        """Durable consumer name for this mode."""
        return consumer_name(self.mode.value, self.settings.queue_prefix)

    # ==================== Entry points ====================

    async def run(self) -> ReindexResult | None:
        """Run the mode: one reindex for ``full``, otherwise consume until cancelled."""
        if self.mode is Mode.FULL:
            return await self.run_full()

        await self.start_liveness()
        if self.mode is Mode.PERIODIC:
            await self.run_periodic()
        else:
            await self.run_incremental()
        return None

    async def run_full(self) -> ReindexResult:
        """Reindex once. Raises if the object stream cannot be opened."""
        logger.info("Running full reindex")
        return await self.synchronizer.reindex()

    async def run_periodic(self) -> None:
        """Consume reindex triggers, one at a time, until cancelled."""
        await self._require_broker().consume(
            subjects=self.settings.reindex_subjects,
            durable=self.name,
            handler=self.handle_periodic,
            concurrency=self.settings.periodic_concurrency,
        )

    async def run_incremental(self) -> None:
        """Consume single-object updates until cancelled."""
        await self._require_broker().consume(
            subjects=[self.settings.incremental_subject],
            durable=self.name,
            handler=self.handle_incremental,
            concurrency=self.settings.incremental_concurrency,
        )

    async def start_liveness(self) -> Subscription:
        """Subscribe to this mode's liveness channel."""
        return await self._require_broker().subscribe_events(
            events_subject(self.mode), self.handle_event
        )

    def _require_broker(self) -> NatsClient:
        if self.broker is None:
            raise RuntimeError(f"{self.mode.value} mode requires a broker connection")
        return self.broker

    # ==================== Handlers ====================

    async def handle_periodic(self, msg: Msg) -> None:
        """Reindex, then acknowledge whatever the outcome.

        A failed reindex is not redelivered: the next trigger runs it again.
        """
        bind_context(mode=self.mode.value, subject=msg.subject)
        try:
            logger.info(f"Received message: [{msg.subject}] [{msg.data.decode(errors='replace')}]")
            try:
                await self.synchronizer.reindex()
            except Exception as e:
                logger.error(f"Reindex failed: {e}", exc_info=True)
            await self._ack(msg)
        finally:
            clear_context()

    async def handle_incremental(self, msg: Msg) -> None:
        """Update the object named in the message, then acknowledge.

        A body that does not parse is rejected instead: with redelivery on its
        first delivery, without it once it has been redelivered.
        """
        bind_context(mode=self.mode.value, subject=msg.subject)
        try:
            body = msg.data.decode(errors="replace")
            logger.info(f"Received message: [{msg.subject}] [{body}]")

            try:
                update = UpdateMessage.model_validate_json(msg.data)
            except ValidationError as e:
                requeue = not is_redelivered(msg)
                logger.error(f"Rejecting malformed message (requeue={requeue}): {e}")
                await reject(msg, requeue=requeue)
                record_broker_message(self.mode.value, "requeued" if requeue else "rejected")
                return

            bind_context(object_id=update.id)
            await self.synchronizer.index_one(update.id)
            await self._ack(msg)
        finally:
            clear_context()

    async def handle_event(self, msg: Msg) -> None:
        """Answer pings on the liveness channel."""
        prefix = f"events.metasync.{self.mode.value}"
        if msg.subject == f"{prefix}.ping":
            pong = Pong(pong_from=f"metasync-{self.mode.value}")
            await self._require_broker().publish(f"{prefix}.pong", pong.model_dump())
            logger.debug(f"Answered ping on {msg.subject}")
        else:
            logger.info(f"Unhandled event on {msg.subject}")

    async def _ack(self, msg: Msg) -> None:
        try:
            await msg.ack()
        except Exception as e:
            logger.error(f"Failed to acknowledge message on {msg.subject}: {e}")
            return
        record_broker_message(self.mode.value, "acked")
