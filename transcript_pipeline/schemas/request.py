"""Pydantic schemas for the Request record and the responses built from it."""

import uuid
from datetime import timedelta
from enum import Enum
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

from transcript_pipeline.errors import TimestampsKeyExists
from transcript_pipeline.timestamps import format_rfc3339_nano, nanos_to_timedelta, now_ns, parse_rfc3339_nano

NIL_UUID = uuid.UUID(int=0)
MAX_CUSTOMER_ID = 10_000_000


class Status(str, Enum):
    PENDING = "PENDING"
    ERROR = "ERROR"
    COMPLETED = "COMPLETED"


def _check_uri(value: str) -> str:
    parsed = urlparse(value)
    if not parsed.scheme or not (parsed.netloc or parsed.path) or any(c.isspace() for c in value):
        raise ValueError("media_uri must be a well-formed URI")
    return value


class Tag(BaseModel):
    """One sensitive-information finding in the working transcript."""

    quote: str
    info_type: str
    likelihood: int = Field(ge=0, le=5)
    begin_byte_offset: int = 0
    end_byte_offset: int = 0

    model_config = {"extra": "forbid"}


class NewRequest(BaseModel):
    """Body of a client POST to /api/v1/requests."""

    customer_id: int = Field(ge=1, lt=MAX_CUSTOMER_ID)
    media_uri: str = Field(min_length=1)

    model_config = {"extra": "forbid"}

    @field_validator("media_uri")
    @classmethod
    def check_media_uri(cls, value: str) -> str:
        return _check_uri(value)


class RequestRecord(BaseModel):
    """The entity tracked through the pipeline; also the wire format between stages."""

    request_id: uuid.UUID = NIL_UUID
    customer_id: int = Field(ge=1, lt=MAX_CUSTOMER_ID)
    media_uri: str = Field(min_length=1)
    status: Status = Status.PENDING
    original_status: int = 0
    accepted_at: str = ""
    updated_at: str = ""
    completed_at: str = ""
    working_transcript: str = ""
    final_transcript: str = ""
    error_reason: str = ""
    timestamps: dict[str, str] = Field(default_factory=dict)
    matched_tags: dict[str, Tag] = Field(default_factory=dict)

    model_config = {"extra": "forbid"}

    @field_validator("media_uri")
    @classmethod
    def check_media_uri(cls, value: str) -> str:
        return _check_uri(value)

    @field_validator("timestamps", "matched_tags", mode="before")
    @classmethod
    def null_map_is_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def has_id(self) -> bool:
        return self.request_id != NIL_UUID

    def add_timestamps(self, start_key: str, start_timestamp: str, end_key: str) -> timedelta:
        """Record `start_key` = start_timestamp and `end_key` = now. Returns the elapsed time.

        Keys are write-once: raises TimestampsKeyExists if either already exists,
        InvalidTimestamp if start_timestamp does not parse.
        """
        start = parse_rfc3339_nano(start_timestamp)
        for key in (start_key, end_key):
            if key in self.timestamps:
                raise TimestampsKeyExists(key)

        end = max(now_ns(), start)
        self.timestamps[start_key] = start_timestamp
        self.timestamps[end_key] = format_rfc3339_nano(end)
        return nanos_to_timedelta(end - start)

    def request_duration(self) -> timedelta:
        """Time from acceptance to completion."""
        accepted = parse_rfc3339_nano(self.accepted_at)
        completed = parse_rfc3339_nano(self.completed_at)
        return nanos_to_timedelta(completed - accepted)

    def to_wire(self) -> str:
        return self.model_dump_json()

    def to_document(self) -> dict[str, Any]:
        """Stored representation: request_id lives in the key, empty fields are omitted."""
        data = self.model_dump(mode="json", exclude={"request_id"})
        return {k: v for k, v in data.items() if v not in ("", 0, {}, None)}

    @classmethod
    def from_document(cls, request_id: uuid.UUID, data: dict[str, Any]) -> "RequestRecord":
        return cls.model_validate({**data, "request_id": request_id})


class PostResponse(BaseModel):
    request_id: uuid.UUID
    customer_id: int
    media_uri: str
    accepted_at: str
    poll_endpoint: str | None = None


class CompletionResponse(BaseModel):
    request_id: uuid.UUID
    customer_id: int
    media_uri: str
    accepted_at: str
    completed_at: str
    transcript: str


class RequestStatusResponse(BaseModel):
    request_id: uuid.UUID
    customer_id: int
    media_uri: str
    status: Status
    accepted_at: str
    completed_at: str | None = None
    transcript: str | None = None
    error_reason: str | None = None
