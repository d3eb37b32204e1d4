import asyncio
from typing import Optional

import aio_pika
from aio_pika import Message, DeliveryMode
from aio_pika.abc import AbstractIncomingMessage, AbstractQueue
from aio_pika.exceptions import AMQPError

from common.config import QUEUE_URL, QUEUE_NAME, QUEUE_PREFETCH
from common.errors import QueueUnavailable
from common.logger import get_logger
from dispatch.models import DispatchMessage
from dispatch.queue import MessageHandler, WorkQueue, decode_message

_PUBLISH_ERRORS = (AMQPError, ConnectionError, asyncio.TimeoutError)


class RabbitMQClient(WorkQueue):
    """Work queue on a durable RabbitMQ queue.

    Messages are persistent and published with confirms. Consumers ack
    manually; a delivery left unacknowledged when its channel closes (or the
    broker's consumer timeout fires) is returned to the queue.
    """

    def __init__(
            self,
            url: str = QUEUE_URL,
            queue_name: str = QUEUE_NAME,
            prefetch_count: int = QUEUE_PREFETCH,
    ) -> None:
        self._logger = get_logger(__name__)
        self._url = url
        self._queue_name = queue_name
        self._prefetch_count = prefetch_count
        self._connection: Optional[aio_pika.abc.AbstractRobustConnection] = None
        self._channel: Optional[aio_pika.abc.AbstractChannel] = None
        self._queue: Optional[AbstractQueue] = None
        self._handler: Optional[MessageHandler] = None
        self._consumer_tag: Optional[str] = None

    async def connect(self) -> None:
        try:
            self._connection = await aio_pika.connect_robust(self._url)
            self._channel = await self._connection.channel(publisher_confirms=True)
            await self._channel.set_qos(prefetch_count=self._prefetch_count)
            self._queue = await self._channel.declare_queue(self._queue_name, durable=True)
        except _PUBLISH_ERRORS as exc:
            raise QueueUnavailable(f"Cannot connect to RabbitMQ: {exc}") from exc

        self._logger.info("Connected to RabbitMQ, queue '%s'", self._queue_name)

    async def disconnect(self) -> None:
        if self._channel and not self._channel.is_closed:
            await self._channel.close()
        if self._connection and not self._connection.is_closed:
            await self._connection.close()

    async def send(self, message: DispatchMessage) -> None:
        if self._channel is None:
            raise QueueUnavailable("Not connected to RabbitMQ", job_id=message.id)

        amqp_message = Message(
            body=message.model_dump_json().encode(),
            delivery_mode=DeliveryMode.PERSISTENT,
            content_type="application/json",
            message_id=message.id,
        )

        try:
            await self._channel.default_exchange.publish(
                amqp_message,
                routing_key=self._queue_name,
            )
        except _PUBLISH_ERRORS as exc:
            raise QueueUnavailable(
                f"Job {message.id}: publish to '{self._queue_name}' failed: {exc}",
                job_id=message.id,
            ) from exc

    async def consume(self, handler: MessageHandler) -> None:
        if self._queue is None:
            raise QueueUnavailable("Not connected to RabbitMQ")

        self._handler = handler
        self._consumer_tag = await self._queue.consume(self._on_message, no_ack=False)

    async def _on_message(self, message: AbstractIncomingMessage) -> None:
        # Leaving the block with an exception rejects the delivery with
        # requeue, so the message is redelivered.
        async with message.process(requeue=True):
            try:
                payload = decode_message(message.body)
            except ValueError:
                self._logger.exception("Dropping undecodable message from '%s'", self._queue_name)
                return

            if message.redelivered:
                self._logger.info("Job %s redelivered", payload.id)

            await self._handler(payload)

    @classmethod
    async def wait_for_broker(
            cls,
            url: str = QUEUE_URL,
            retries: int = 12,
            delay: float = 5.0,
            **kwargs,
    ) -> "RabbitMQClient":
        logger = get_logger(__name__)
        for attempt in range(1, retries + 1):
            client = cls(url, **kwargs)
            try:
                await client.connect()
                return client
            except QueueUnavailable as e:
                logger.warning("RabbitMQ not ready (attempt %d/%d): %s", attempt, retries, e)
                if attempt < retries:
                    await asyncio.sleep(delay)

        raise QueueUnavailable(f"Failed to connect to RabbitMQ after {retries} attempts")
