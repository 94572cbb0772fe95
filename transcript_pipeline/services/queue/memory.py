"""In-process queue, used by tests and single-process runs."""

import threading

from transcript_pipeline.schemas.request import RequestRecord
from transcript_pipeline.services.queue.base import Queue, QueueInfo, Task


class MemoryQueue(Queue):
    """Keeps tasks in per-queue lists. Safe to share between threads."""

    def __init__(self) -> None:
        self._tasks: dict[str, list[Task]] = {}
        self._lock = threading.Lock()

    def create(self, info: QueueInfo) -> None:
        with self._lock:
            self._tasks.setdefault(info.name, [])

    def connect(self, info: QueueInfo) -> None:
        self.create(info)

    def add(self, info: QueueInfo, record: RequestRecord) -> Task:
        task = Task.for_record(info, record)
        with self._lock:
            self._tasks.setdefault(info.name, []).append(task)
        return task

    def tasks(self, queue_name: str) -> list[Task]:
        with self._lock:
            return list(self._tasks.get(queue_name, []))

    def pop(self, queue_name: str) -> Task | None:
        with self._lock:
            pending = self._tasks.get(queue_name)
            return pending.pop(0) if pending else None
