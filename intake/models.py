from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from jobs.models import JobStatus


class SubmitJobRequest(BaseModel):
    # Optional so that a missing uri surfaces as InvalidRequest (400)
    uri: Optional[str] = Field(
        default=None,
        examples=["https://example.com"],
    )


class JobCreatedResponse(BaseModel):
    id: str


class JobResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    status: JobStatus
    source_uri: str = Field(alias="sourceUri")
    result_uri: Optional[str] = Field(default=None, alias="resultUri")
    error: Optional[str] = None


class ErrorResponse(BaseModel):
    error: str
    detail: Optional[str] = None
