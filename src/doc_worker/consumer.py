import asyncio
import logging
from collections import Counter

import aio_pika
from aio_pika.abc import AbstractIncomingMessage

from .config import WorkerConfig
from .conversion import ConversionPipeline, Disposition

logger = logging.getLogger(__name__)


def delivery_count(message: AbstractIncomingMessage) -> int:
    """1-based attempt number for a delivery.

    Quorum queues report prior deliveries in `x-delivery-count`; classic
    queues only say whether the message was redelivered.
    """
    headers = message.headers or {}
    raw = headers.get("x-delivery-count")
    if raw is not None:
        try:
            return int(raw) + 1
        except (TypeError, ValueError):
            pass
    return 2 if message.redelivered else 1


class JobConsumer:
    """Owns the broker subscription and feeds deliveries to the pipeline.

    Only one pipeline runs at a time, whatever the prefetch: the renderer is
    not safe to run concurrently and every job shares the result directory.
    """

    def __init__(self, config: WorkerConfig, pipeline: ConversionPipeline) -> None:
        self._config = config
        self._pipeline = pipeline
        self._one_at_a_time = asyncio.Lock()
        self._connection = None
        self._channel = None
        self._queue = None
        self._consumer_tag: str | None = None
        self._stopping = False
        self._processed: Counter[str] = Counter()

    @property
    def running(self) -> bool:
        return self._consumer_tag is not None and not self._stopping

    async def start(self) -> None:
        cfg = self._config
        self._connection = await aio_pika.connect_robust(cfg.amqp_url)
        self._channel = await self._connection.channel()
        await self._channel.set_qos(prefetch_count=max(1, cfg.prefetch))

        self._queue = await self._channel.declare_queue(cfg.queue, durable=True)
        if cfg.exchange:
            exchange = await self._channel.declare_exchange(
                cfg.exchange, aio_pika.ExchangeType.TOPIC, durable=True
            )
            await self._queue.bind(exchange, routing_key=cfg.routing_key)

        self._stopping = False
        self._consumer_tag = await self._queue.consume(
            self.handle, no_ack=False, consumer_tag=cfg.consumer_tag
        )
        logger.info(
            "Consuming queue '%s' (prefetch=%d, tag=%s)", cfg.queue, cfg.prefetch, self._consumer_tag
        )

    async def handle(self, message: AbstractIncomingMessage) -> None:
        if self._stopping:
            # Left unsettled; the broker redelivers once the channel closes.
            return
        async with self._one_at_a_time:
            if self._stopping:
                return
            logger.info("Received message with content: %s", message.body.decode("utf-8", "replace"))
            result = await self._pipeline.process(message.body, delivery_count=delivery_count(message))
            self._processed[result.verdict.value] += 1
            await self._settle(message, result.disposition, result.uuid)

    async def _settle(self, message: AbstractIncomingMessage, disposition: Disposition, uuid: str | None) -> None:
        try:
            if disposition.ack:
                await message.ack()
            else:
                await message.nack(requeue=disposition.requeue)
        except Exception as exc:  # noqa: BLE001
            # The broker redelivers whatever we failed to settle.
            logger.exception("Failed to settle delivery for %s: %s", uuid, exc)
            return
        logger.info(
            "Delivery for %s %s", uuid, "acked" if disposition.ack else f"nacked (requeue={disposition.requeue})"
        )

    async def stop(self) -> None:
        self._stopping = True
        if self._queue is not None and self._consumer_tag is not None:
            try:
                await self._queue.cancel(self._consumer_tag)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to cancel consumer %s: %s", self._consumer_tag, exc)
        # Let the in-flight job reach its terminal state.
        async with self._one_at_a_time:
            pass
        for resource in (self._channel, self._connection):
            if resource is None:
                continue
            try:
                await resource.close()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Error during broker teardown: %s", exc)
        self._consumer_tag = None
        self._channel = None
        self._connection = None
        logger.info("Consumer stopped")

    def snapshot(self) -> dict[str, object]:
        return {
            "running": self.running,
            "queue": self._config.queue,
            "current_job": self._pipeline.current_uuid,
            "processed": dict(self._processed),
        }
