from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from src.schemas.brand import BrandSnapshot


class StoredFile(BaseModel):
    """A multipart upload written to local disk, waiting for the worker."""

    path: str
    filename: str
    content_type: str | None = None


class UploadFilePayload(BaseModel):
    type: Literal["uploadFile"] = "uploadFile"
    file: StoredFile
    brand: BrandSnapshot


class DeleteFilePayload(BaseModel):
    type: Literal["deleteFile"] = "deleteFile"
    url: str = Field(..., min_length=1)


JobPayload = Annotated[Union[UploadFilePayload, DeleteFilePayload], Field(discriminator="type")]

job_payload_adapter: TypeAdapter[JobPayload] = TypeAdapter(JobPayload)


def parse_job_payload(job_type: str, payload: dict[str, Any]) -> UploadFilePayload | DeleteFilePayload:
    return job_payload_adapter.validate_python({**payload, "type": job_type})


def dump_job_payload(payload: UploadFilePayload | DeleteFilePayload) -> dict[str, Any]:
    # The discriminator lives in jobs.type; the JSON column holds the rest.
    return payload.model_dump(mode="json", exclude={"type"})


class JobRead(BaseModel):
    id: int
    queue: str
    type: str
    payload: dict[str, Any]

    status: str
    attempts: int
    max_attempts: int
    backoff_ms: int

    depends_on_id: int | None = None
    last_error: str | None = None

    available_at: datetime
    finished_at: datetime | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class JobEnvelope(BaseModel):
    message: str
    data: JobRead
