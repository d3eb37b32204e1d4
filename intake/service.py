import re
from typing import Optional

from common.errors import (
    InvalidRequest,
    NotFound,
    QueueUnavailable,
)
from common.logger import get_logger
from dispatch.models import DispatchMessage
from dispatch.queue import WorkQueue
from jobs.models import Job
from jobs.store import JobStore

_JOB_ID_RE = re.compile(r"[A-Za-z0-9._:-]{1,128}")


class IntakeService:
    """Creates jobs and answers status queries.

    Holds no state between calls besides the injected store and queue
    handles. It is the only writer of the ``submitted`` status and the only
    producer of dispatch messages.
    """

    def __init__(self, store: JobStore, queue: WorkQueue) -> None:
        self._logger = get_logger(__name__)
        self._store = store
        self._queue = queue

    async def submit(self, source_uri: Optional[str]) -> str:
        if not isinstance(source_uri, str) or not source_uri:
            raise InvalidRequest(
                "Expected parameter `uri` with URI of page to screenshot"
            )

        job = Job.submitted(source_uri)

        # The record must exist before any worker can see the message.
        await self._store.create(job)

        try:
            await self._queue.send(DispatchMessage(id=job.id, uri=job.source_uri))
        except QueueUnavailable:
            self._logger.error(
                "Job %s recorded but not dispatched; it will stay 'submitted'",
                job.id,
            )
            raise

        self._logger.info("Job %s created successfully; uri: %s", job.id, source_uri)
        return job.id

    async def get_status(self, job_id: str) -> Job:
        if not isinstance(job_id, str) or not _JOB_ID_RE.fullmatch(job_id):
            raise InvalidRequest(f"Malformed job id: {job_id!r}")

        job = await self._store.get(job_id)
        if job is None:
            raise NotFound(job_id)

        return job
