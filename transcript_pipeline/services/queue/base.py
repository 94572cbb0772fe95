"""Queue abstraction shared by every backend."""

import json
import secrets
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass

from transcript_pipeline.config import StageSettings
from transcript_pipeline.errors import QueueError, ZeroIdError
from transcript_pipeline.schemas.request import RequestRecord

HANDLER_ENDPOINT = "/task_handler"


@dataclass(frozen=True)
class QueueInfo:
    """Where a stage writes its tasks and which service handles them."""

    name: str
    service_to_handle: str
    handler_endpoint: str = HANDLER_ENDPOINT

    @classmethod
    def from_stage(cls, stage: StageSettings) -> "QueueInfo":
        return cls(name=stage.write_to_queue, service_to_handle=stage.next_service_name)


@dataclass(frozen=True)
class Task:
    """One queued delivery of a serialized RequestRecord to a stage."""

    name: str
    queue_name: str
    service: str
    handler_endpoint: str
    body: str

    @classmethod
    def for_record(cls, info: QueueInfo, record: RequestRecord) -> "Task":
        if not record.has_id:
            raise ZeroIdError("refusing to enqueue a zero-valued request_id")
        return cls(
            name=f"{record.request_id}-{secrets.token_hex(4)}",
            queue_name=info.name,
            service=info.service_to_handle,
            handler_endpoint=info.handler_endpoint,
            body=record.to_wire(),
        )

    def to_message(self) -> bytes:
        return json.dumps(asdict(self)).encode("utf-8")

    @classmethod
    def from_message(cls, message: bytes | str) -> "Task":
        try:
            return cls(**json.loads(message))
        except (TypeError, ValueError) as e:
            raise QueueError(f"malformed task message: {e}", cause=e) from e


class Queue(ABC):
    """A durable FIFO of tasks addressed to pipeline stages."""

    @abstractmethod
    def create(self, info: QueueInfo) -> None:
        """Create the queue if it does not exist. Idempotent."""

    @abstractmethod
    def connect(self, info: QueueInfo) -> None:
        """Verify the queue is reachable."""

    @abstractmethod
    def add(self, info: QueueInfo, record: RequestRecord) -> Task:
        """Enqueue `record` for `info.service_to_handle`; returns once the task is accepted."""
