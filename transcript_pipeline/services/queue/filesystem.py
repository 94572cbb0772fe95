"""Filesystem-backed queue for development: one JSON file per task."""

import itertools
import logging
import os
import tempfile
from pathlib import Path

from transcript_pipeline.errors import QueueError
from transcript_pipeline.schemas.request import RequestRecord
from transcript_pipeline.services.queue.base import Queue, QueueInfo, Task
from transcript_pipeline.timestamps import now_ns

logger = logging.getLogger(__name__)


class FileSystemQueue(Queue):
    """Tasks live under `<root>/<queue name>/`, named so that sorting gives FIFO order."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self._sequence = itertools.count()

    def directory(self, queue_name: str) -> Path:
        return self.root / queue_name

    def create(self, info: QueueInfo) -> None:
        try:
            self.directory(info.name).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise QueueError(f"create queue {info.name}: {e}", cause=e) from e

    def connect(self, info: QueueInfo) -> None:
        path = self.directory(info.name)
        if not path.is_dir():
            raise QueueError(f"queue directory {path} does not exist")

    def add(self, info: QueueInfo, record: RequestRecord) -> Task:
        task = Task.for_record(info, record)
        directory = self.directory(info.name)
        target = directory / f"{now_ns():020d}-{next(self._sequence):06d}-{task.name}.json"
        try:
            directory.mkdir(parents=True, exist_ok=True)
            # Write then rename so the relay never reads a partial file
            fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
            with os.fdopen(fd, "wb") as f:
                f.write(task.to_message())
            os.replace(tmp_path, target)
        except OSError as e:
            raise QueueError(f"add to queue {info.name}: {e}", cause=e) from e

        logger.debug("Wrote task %s to %s", task.name, target)
        return task

    def pending(self, queue_name: str) -> list[Path]:
        """Task files waiting in `queue_name`, oldest first."""
        directory = self.directory(queue_name)
        if not directory.is_dir():
            return []
        return sorted(directory.glob("*.json"))
