import uuid
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    SUBMITTED = "submitted"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# Every edge of the lifecycle. Creation (no record -> SUBMITTED) is not a
# transition; it is handled by JobStore.create.
TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.SUBMITTED: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in TRANSITIONS[current]


def new_job_id() -> str:
    # uuid1 is time ordered, so ids sort roughly by submission time
    return str(uuid.uuid1())


class Job(BaseModel):
    """Durable record of one screenshot request.

    Field names follow the wire format (``sourceUri``, ``resultUri``) through
    aliases; python code uses the snake_case attributes.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    status: JobStatus
    source_uri: str = Field(alias="sourceUri")
    result_uri: Optional[str] = Field(default=None, alias="resultUri")
    error: Optional[str] = None

    @classmethod
    def submitted(cls, source_uri: str, job_id: Optional[str] = None) -> "Job":
        return cls(
            id=job_id or new_job_id(),
            status=JobStatus.SUBMITTED,
            source_uri=source_uri,
        )

    def to_record(self) -> dict[str, str]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_record(cls, record: dict[str, str]) -> "Job":
        return cls.model_validate(record)
