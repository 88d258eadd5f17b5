"""Async NATS client wrapper (JetStream work queues and core pub/sub)."""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import nats
from nats.aio.msg import Msg
from nats.aio.subscription import Subscription
from nats.js import JetStreamContext
from nats.js.api import AckPolicy, ConsumerConfig, DeliverPolicy

from metasync.config import BrokerSettings

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Msg], Awaitable[None]]


def consumer_name(mode: str, prefix: str = "") -> str:
    """Durable consumer name for a worker mode, e.g. ``metasync-periodic``."""
    name = f"metasync-{mode}"
    if prefix:
        name = f"{prefix}-{name}"
    return name


def is_redelivered(msg: Msg) -> bool:
    """Whether the broker has delivered this message before."""
    try:
        return msg.metadata.num_delivered > 1
    except nats.errors.NotJSMessageError:
        return False


async def reject(msg: Msg, requeue: bool) -> None:
    """Reject a message, asking for redelivery only when ``requeue`` is set."""
    if requeue:
        await msg.nak()
    else:
        await msg.term()


class NatsClient:
    """Async NATS client wrapper.

    Work queues are JetStream pull consumers with explicit acknowledgement;
    handlers acknowledge or reject each message themselves. The liveness
    channel uses core NATS pub/sub.
    """

    def __init__(self, settings: BrokerSettings) -> None:
        """Initialize NATS client.

        Args:
            settings: Broker section of the application settings.
        """
        self.settings = settings
        self._nc: nats.NATS | None = None
        self._js: JetStreamContext | None = None

    async def connect(self) -> None:
        """Connect to NATS server and initialize JetStream context."""
        if self._nc is not None:
            return

        logger.info(f"Connecting to NATS at {self.settings.uri}")
        self._nc = await nats.connect(
            servers=self.settings.uri,
            name=self.settings.client_name,
        )
        self._js = self._nc.jetstream()
        logger.info("Connected to NATS JetStream")

    async def publish(self, subject: str, message: dict[str, Any]) -> None:
        """Publish a JSON message on a core NATS subject.

        Args:
            subject: Subject to publish on.
            message: Message payload.
        """
        await self.connect()

        payload = json.dumps(message).encode("utf-8")
        await self._nc.publish(subject, payload)
        logger.debug(f"Published message to {subject}")

    async def subscribe_events(self, subject: str, handler: MessageHandler) -> Subscription:
        """Subscribe to a core NATS subject (no persistence, no acknowledgement).

        Args:
            subject: Subject or wildcard pattern.
            handler: Async callback for each message.

        Returns:
            The subscription, for unsubscribing.
        """
        await self.connect()

        logger.info(f"Subscribing to events on {subject}")
        return await self._nc.subscribe(subject, cb=handler)

    async def consume(
        self,
        subjects: Sequence[str],
        durable: str,
        handler: MessageHandler,
        concurrency: int,
    ) -> None:
        """Consume a durable work queue until cancelled.

        Each message is handled on its own task; at most ``concurrency``
        handlers run at once. On cancellation, in-flight handlers are awaited
        before returning.

        Args:
            subjects: Subjects (routing keys) the consumer is bound to.
            durable: Durable consumer name.
            handler: Async callback; responsible for ack/nak/term.
            concurrency: Maximum number of messages handled concurrently.
        """
        await self.connect()

        stream = self.settings.stream
        config = ConsumerConfig(
            durable_name=durable,
            ack_policy=AckPolicy.EXPLICIT,
            deliver_policy=DeliverPolicy.NEW,
            ack_wait=self.settings.ack_wait_seconds,
            max_ack_pending=concurrency,
        )
        if len(subjects) == 1:
            config.filter_subject = subjects[0]
        else:
            config.filter_subjects = list(subjects)

        logger.info(f"Binding {durable} on stream {stream} to {', '.join(subjects)}")
        await self._js.add_consumer(stream, config=config)
        psub = await self._js.pull_subscribe_bind(durable=durable, stream=stream)

        in_flight: set[asyncio.Task[None]] = set()
        logger.info(f"Started consuming as {durable} (concurrency: {concurrency})")

        try:
            while True:
                free = concurrency - len(in_flight)
                if free <= 0:
                    await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                    continue

                try:
                    msgs = await psub.fetch(batch=free, timeout=self.settings.fetch_timeout_seconds)
                except nats.errors.TimeoutError:
                    # No messages available, continue polling
                    continue
                except Exception as e:
                    logger.error(f"Error fetching messages: {e}", exc_info=True)
                    await asyncio.sleep(self.settings.fetch_timeout_seconds)
                    continue

                for msg in msgs:
                    task = asyncio.create_task(self._run_handler(handler, msg))
                    in_flight.add(task)
                    task.add_done_callback(in_flight.discard)
        finally:
            if in_flight:
                logger.info(f"Waiting for {len(in_flight)} in-flight messages")
                await asyncio.gather(*in_flight, return_exceptions=True)
            await psub.unsubscribe()

    async def _run_handler(self, handler: MessageHandler, msg: Msg) -> None:
        try:
            await handler(msg)
        except Exception as e:
            # Left unacknowledged; the broker redelivers after ack_wait
            logger.error(f"Unhandled error processing message on {msg.subject}: {e}", exc_info=True)

    async def close(self) -> None:
        """Drain and close the NATS connection."""
        if self._nc is not None:
            await self._nc.drain()
            await self._nc.close()
            self._nc = None
            self._js = None
            logger.info("NATS connection closed")

    async def __aenter__(self) -> "NatsClient":
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
