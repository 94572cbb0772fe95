"""Queue that discards every task."""

import logging

from transcript_pipeline.schemas.request import RequestRecord
from transcript_pipeline.services.queue.base import Queue, QueueInfo, Task

logger = logging.getLogger(__name__)


class NullQueue(Queue):
    def create(self, info: QueueInfo) -> None:
        pass

    def connect(self, info: QueueInfo) -> None:
        pass

    def add(self, info: QueueInfo, record: RequestRecord) -> Task:
        task = Task.for_record(info, record)
        logger.debug("Discarding task %s for %s", task.name, info.service_to_handle)
        return task
