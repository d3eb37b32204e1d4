from abc import ABC, abstractmethod
from typing import Optional

from common.errors import (
    InvalidTransition,
    JobAlreadyExists,
    TransitionRejected,
)
from jobs.models import Job, JobStatus, can_transition


def check_transition(
        expected: JobStatus,
        target: JobStatus,
        result_uri: Optional[str] = None,
        error: Optional[str] = None,
) -> None:
    if not can_transition(expected, target):
        raise InvalidTransition(
            f"Transition '{expected.value}' -> '{target.value}' is not allowed"
        )
    if target == JobStatus.COMPLETED and not result_uri:
        raise InvalidTransition("A completed job requires a result uri")
    if target == JobStatus.FAILED and not error:
        raise InvalidTransition("A failed job requires an error description")


class JobStore(ABC):
    """Keyed job records with conditional status updates.

    Implementations must give read-after-write consistency for a single key
    and must apply ``transition`` atomically: the status check and the write
    happen as one step, so two callers racing on the same job cannot both
    succeed.
    """

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    @abstractmethod
    async def create(self, job: Job) -> None:
        """Insert a new record; raises JobAlreadyExists if the key is taken."""

    @abstractmethod
    async def get(self, job_id: str) -> Optional[Job]:
        ...

    @abstractmethod
    async def transition(
            self,
            job_id: str,
            expected: JobStatus,
            target: JobStatus,
            result_uri: Optional[str] = None,
            error: Optional[str] = None,
    ) -> Job:
        """Move a job from ``expected`` to ``target``.

        Raises InvalidTransition for edges outside the state machine and
        TransitionRejected when the stored status is not ``expected``.
        """

    async def __aenter__(self) -> "JobStore":
        await self.connect()
        return self

    async def __aexit__(self, *_) -> None:
        await self.disconnect()


class InMemoryJobStore(JobStore):
    """Process-local store. Each method runs without awaiting, so on a single
    event loop every operation is atomic."""

    def __init__(self) -> None:
        self._records: dict[str, dict[str, str]] = {}

    async def create(self, job: Job) -> None:
        if job.id in self._records:
            raise JobAlreadyExists(job.id)
        self._records[job.id] = job.to_record()

    async def get(self, job_id: str) -> Optional[Job]:
        record = self._records.get(job_id)
        if record is None:
            return None
        return Job.from_record(record)

    async def transition(
            self,
            job_id: str,
            expected: JobStatus,
            target: JobStatus,
            result_uri: Optional[str] = None,
            error: Optional[str] = None,
    ) -> Job:
        check_transition(expected, target, result_uri, error)

        record = self._records.get(job_id)
        actual = record["status"] if record else None
        if actual != expected.value:
            raise TransitionRejected(job_id, expected.value, actual)

        updated = dict(record, status=target.value)
        if result_uri is not None:
            updated["resultUri"] = result_uri
        if error is not None:
            updated["error"] = error

        self._records[job_id] = updated
        return Job.from_record(updated)

    def __len__(self) -> int:
        return len(self._records)
