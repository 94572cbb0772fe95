"""Durable queue on RabbitMQ."""

import logging

import pika
from pika.exceptions import AMQPError

from transcript_pipeline.errors import QueueError
from transcript_pipeline.schemas.request import RequestRecord
from transcript_pipeline.services.queue.base import Queue, QueueInfo, Task

logger = logging.getLogger(__name__)


class RabbitMQQueue(Queue):
    """Persistent messages on durable queues.

    A connection is opened per operation, so one instance can be shared by
    concurrent request handlers.
    """

    def __init__(self, host: str = "localhost", port: int = 5672, username: str = "guest", password: str = "guest"):
        self.host = host
        self.port = port
        self.connection_params = pika.ConnectionParameters(
            host=host,
            port=port,
            credentials=pika.PlainCredentials(username, password),
        )

    def open_connection(self) -> pika.BlockingConnection:
        return pika.BlockingConnection(self.connection_params)

    def create(self, info: QueueInfo) -> None:
        try:
            connection = self.open_connection()
            try:
                connection.channel().queue_declare(queue=info.name, durable=True)
            finally:
                connection.close()
        except AMQPError as e:
            raise QueueError(f"create queue {info.name}: {e}", cause=e) from e

    def connect(self, info: QueueInfo) -> None:
        try:
            connection = self.open_connection()
            try:
                connection.channel().queue_declare(queue=info.name, durable=True, passive=True)
            finally:
                connection.close()
        except AMQPError as e:
            raise QueueError(f"connect to queue {info.name} on {self.host}:{self.port}: {e}", cause=e) from e

    def add(self, info: QueueInfo, record: RequestRecord) -> Task:
        task = Task.for_record(info, record)
        try:
            connection = self.open_connection()
            try:
                channel = connection.channel()
                channel.queue_declare(queue=info.name, durable=True)
                channel.confirm_delivery()
                channel.basic_publish(
                    exchange="",
                    routing_key=info.name,
                    body=task.to_message(),
                    properties=pika.BasicProperties(
                        content_type="application/json",
                        delivery_mode=2,
                        message_id=task.name,
                    ),
                )
            finally:
                connection.close()
        except AMQPError as e:
            raise QueueError(f"add to queue {info.name}: {e}", cause=e) from e

        logger.debug("Published task %s to %s", task.name, info.name)
        return task
