import asyncio
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

from pydantic import ValidationError

from common.errors import QueueUnavailable
from common.logger import get_logger
from dispatch.models import DispatchMessage

MessageHandler = Callable[[DispatchMessage], Awaitable[None]]


def decode_message(body: bytes) -> DispatchMessage:
    try:
        return DispatchMessage.model_validate_json(body)
    except ValidationError as exc:
        raise ValueError(f"Invalid dispatch message: {body!r}") from exc


class WorkQueue(ABC):
    """At-least-once channel for dispatch messages.

    ``send`` returns only once the message is accepted. A consumed message is
    acknowledged when the handler returns and redelivered when it raises.
    """

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    @abstractmethod
    async def send(self, message: DispatchMessage) -> None:
        ...

    @abstractmethod
    async def consume(self, handler: MessageHandler) -> None:
        ...

    async def __aenter__(self) -> "WorkQueue":
        await self.connect()
        return self

    async def __aexit__(self, *_) -> None:
        await self.disconnect()


class InMemoryWorkQueue(WorkQueue):
    """Single-process queue. Deliveries are pumped explicitly with
    ``deliver_pending`` so callers control when a consumer runs."""

    def __init__(self) -> None:
        self._logger = get_logger(__name__)
        self._pending: asyncio.Queue[bytes] = asyncio.Queue()
        self._handler: Optional[MessageHandler] = None
        self.sent: list[DispatchMessage] = []
        self.acked: list[DispatchMessage] = []
        self.closed = False

    async def send(self, message: DispatchMessage) -> None:
        if self.closed:
            raise QueueUnavailable("Work queue is closed", job_id=message.id)

        self._pending.put_nowait(message.model_dump_json().encode())
        self.sent.append(message)

    def send_raw(self, body: bytes) -> None:
        self._pending.put_nowait(body)

    def requeue(self, message: DispatchMessage) -> None:
        """Make a message visible again, as a broker does once the visibility
        window of an unacknowledged delivery expires."""
        self._pending.put_nowait(message.model_dump_json().encode())

    async def consume(self, handler: MessageHandler) -> None:
        self._handler = handler

    @property
    def pending(self) -> int:
        return self._pending.qsize()

    async def deliver_pending(self) -> int:
        """Deliver every message queued right now once. Returns the number
        of acknowledged deliveries; failed ones go back on the queue."""
        if self._handler is None:
            raise RuntimeError("No consumer registered")

        acked = 0
        for _ in range(self._pending.qsize()):
            body = self._pending.get_nowait()
            try:
                message = decode_message(body)
            except ValueError:
                self._logger.exception("Dropping undecodable message")
                continue

            try:
                await self._handler(message)
            except Exception:
                self._logger.exception("Delivery of job %s failed, requeued", message.id)
                self._pending.put_nowait(body)
                continue

            self.acked.append(message)
            acked += 1

        return acked

    async def disconnect(self) -> None:
        self.closed = True
