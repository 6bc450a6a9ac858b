import json
import logging

import aio_pika

logger = logging.getLogger(__name__)


class OutcomePublisher:
    """Reports job outcomes on a secondary queue, best-effort.

    A short-lived connection is opened per outcome; failures are logged and
    swallowed so they never change how the originating delivery is settled.
    """

    def __init__(self, amqp_url: str, queue: str | None) -> None:
        self._amqp_url = amqp_url
        self._queue = queue

    async def publish(self, uuid: str, success: bool) -> bool:
        if not self._queue:
            logger.debug("Outcome queue is empty, skip publish")
            return False

        payload = json.dumps({"uuid": uuid, "success": success})
        try:
            connection = await aio_pika.connect(self._amqp_url)
            async with connection:
                channel = await connection.channel()
                await channel.declare_queue(self._queue, durable=True)
                message = aio_pika.Message(
                    body=payload.encode("utf-8"),
                    content_type="application/json",
                    delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
                )
                await channel.default_exchange.publish(message, routing_key=self._queue)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Failed to publish outcome for %s: %s", uuid, exc)
            return False
        logger.info("Published outcome to '%s': %s", self._queue, payload)
        return True
