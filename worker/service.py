import asyncio
from abc import ABC, abstractmethod
from typing import Optional

from common.config import CAPTURE_ATTEMPTS, CAPTURE_RETRY_DELAY
from common.errors import TransitionRejected
from common.logger import get_logger
from dispatch.models import DispatchMessage
from dispatch.queue import WorkQueue
from jobs.models import JobStatus
from jobs.store import JobStore
from storage.filesystem import ArtifactStore


class Capturer(ABC):
    """Renders a URI to PNG bytes. Rendering itself lives outside this
    package; workers receive an implementation at startup."""

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    @abstractmethod
    async def capture(self, uri: str) -> bytes:
        ...


class ScreenshotWorker:
    """Consumes dispatch messages and drives jobs to a terminal status.

    Deliveries are at least once, so every message is checked against the
    stored status first and each status change is a conditional update. A
    message for a job that has already left ``submitted`` is a duplicate and
    is acknowledged without touching the record.
    """

    def __init__(
            self,
            store: JobStore,
            queue: WorkQueue,
            capturer: Capturer,
            artifacts: ArtifactStore,
            attempts: int = CAPTURE_ATTEMPTS,
            retry_delay: float = CAPTURE_RETRY_DELAY,
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be at least 1")

        self._logger = get_logger(__name__)
        self._store = store
        self._queue = queue
        self._capturer = capturer
        self._artifacts = artifacts
        self._attempts = attempts
        self._retry_delay = retry_delay

    async def start(self) -> None:
        # The queue arrives connected, see RabbitMQClient.wait_for_broker
        await self._store.connect()
        await self._capturer.start()
        await self._queue.consume(self.handle)

        self._logger.info("Worker is consuming dispatch messages")

    async def stop(self) -> None:
        await self._queue.disconnect()
        await self._capturer.stop()
        await self._store.disconnect()

        self._logger.info("Worker stopped")

    async def handle(self, message: DispatchMessage) -> None:
        job = await self._store.get(message.id)
        if job is None:
            self._logger.warning("Job %s has no record, discarding message", message.id)
            return

        if job.status != JobStatus.SUBMITTED:
            self._logger.info(
                "Job %s is already '%s', discarding duplicate delivery",
                job.id, job.status.value,
            )
            return

        try:
            await self._store.transition(job.id, JobStatus.SUBMITTED, JobStatus.PROCESSING)
        except TransitionRejected as exc:
            self._logger.info("Job %s claimed by another worker (%s)", job.id, exc.actual)
            return

        try:
            image = await self._capture(job.source_uri)
            result_uri = await asyncio.to_thread(self._artifacts.save, job.id, image)
        except Exception as exc:
            error_msg = f"{type(exc).__name__}: {exc}"
            self._logger.exception("Job %s failed: %s", job.id, error_msg)
            await self._finish(job.id, JobStatus.FAILED, error=error_msg)
            return

        self._logger.info("Job %s completed: %s", job.id, result_uri)
        await self._finish(job.id, JobStatus.COMPLETED, result_uri=result_uri)

    async def _capture(self, uri: str) -> bytes:
        last_error: Optional[Exception] = None

        for attempt in range(1, self._attempts + 1):
            try:
                return await self._capturer.capture(uri)
            except Exception as exc:
                last_error = exc
                self._logger.warning(
                    "Capture of %s failed (attempt %d/%d): %s",
                    uri, attempt, self._attempts, exc,
                )
                if attempt < self._attempts:
                    await asyncio.sleep(self._retry_delay)

        raise last_error

    async def _finish(
            self,
            job_id: str,
            status: JobStatus,
            result_uri: Optional[str] = None,
            error: Optional[str] = None,
    ) -> None:
        try:
            await self._store.transition(
                job_id,
                JobStatus.PROCESSING,
                status,
                result_uri=result_uri,
                error=error,
            )
        except TransitionRejected as exc:
            self._logger.warning(
                "Job %s moved to '%s' concurrently, '%s' not recorded",
                job_id, exc.actual, status.value,
            )

    async def __aenter__(self) -> "ScreenshotWorker":
        await self.start()
        return self

    async def __aexit__(self, *_) -> None:
        await self.stop()
