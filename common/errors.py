from typing import Optional


class PipelineError(Exception):
    """Base class for every error raised by the job pipeline."""


class InvalidRequest(PipelineError):
    pass


class NotFound(PipelineError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class StoreUnavailable(PipelineError):
    pass


class QueueUnavailable(PipelineError):
    def __init__(self, message: str, job_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.job_id = job_id


class JobAlreadyExists(PipelineError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} already exists")
        self.job_id = job_id


class InvalidTransition(PipelineError):
    """The requested status change is not an edge of the state machine."""


class TransitionRejected(PipelineError):
    """The stored status did not match the expected prior status."""

    def __init__(self, job_id: str, expected: str, actual: Optional[str]) -> None:
        super().__init__(
            f"Job {job_id}: expected status '{expected}', found '{actual}'"
        )
        self.job_id = job_id
        self.expected = expected
        self.actual = actual
