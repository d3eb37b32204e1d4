from pydantic import BaseModel


class DispatchMessage(BaseModel):
    """Queue payload pointing a worker at a job record; not a copy of it."""

    id: str
    uri: str
