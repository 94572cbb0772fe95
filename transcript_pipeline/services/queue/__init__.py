"""Queue backends."""

from transcript_pipeline.config import Settings
from transcript_pipeline.services.queue.base import HANDLER_ENDPOINT, Queue, QueueInfo, Task
from transcript_pipeline.services.queue.filesystem import FileSystemQueue
from transcript_pipeline.services.queue.memory import MemoryQueue
from transcript_pipeline.services.queue.null import NullQueue
from transcript_pipeline.services.queue.rabbitmq import RabbitMQQueue


def queue_from_settings(settings: Settings) -> Queue:
    """Select the queue backend named by QUEUE_BACKEND."""
    backend = settings.QUEUE_BACKEND
    if backend == "durable":
        return RabbitMQQueue(
            host=settings.RABBITMQ_HOST,
            port=settings.RABBITMQ_PORT,
            username=settings.RABBITMQ_USERNAME,
            password=settings.RABBITMQ_PASSWORD,
        )
    if backend == "filesystem":
        return FileSystemQueue(settings.QUEUE_DIR)
    if backend == "memory":
        return MemoryQueue()
    return NullQueue()


__all__ = [
    "HANDLER_ENDPOINT",
    "FileSystemQueue",
    "MemoryQueue",
    "NullQueue",
    "Queue",
    "QueueInfo",
    "RabbitMQQueue",
    "Task",
    "queue_from_settings",
]
