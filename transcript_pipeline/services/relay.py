"""Delivery relay: drains a queue and POSTs each task to its target stage.

Delivery is at-least-once. A 2xx reply acknowledges the task, a 4xx reply
drops it, and a 5xx reply or transport error is retried with exponential
backoff and then left on the queue for a later attempt.
"""

import functools
import logging
import threading
import time
from enum import Enum
from pathlib import Path

import httpx
from pika.exceptions import AMQPError
from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from transcript_pipeline.config import Settings
from transcript_pipeline.errors import QueueError
from transcript_pipeline.services.queue import FileSystemQueue, RabbitMQQueue, Task

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    ACK = "ack"
    DROP = "drop"
    RETRY = "retry"


class RetryableDelivery(Exception):
    """The target replied 5xx or could not be reached."""


class Relay:
    """POSTs tasks to the stage services named in configuration."""

    def __init__(self, settings: Settings, client: httpx.Client | None = None, wait_multiplier: float = 0.5) -> None:
        self.settings = settings
        self.client = client or httpx.Client(timeout=httpx.Timeout(settings.RECOGNITION_TIMEOUT_SECONDS + 30))
        self.wait_multiplier = wait_multiplier
        self._workers: list[threading.Thread] = []

    def target_url(self, task: Task) -> str | None:
        stage = self.settings.stage_for_service(task.service)
        if stage is None:
            return None
        return stage.url.rstrip("/") + task.handler_endpoint

    def _post(self, url: str, task: Task) -> Outcome:
        try:
            response = self.client.post(
                url,
                content=task.body,
                headers={
                    "Content-Type": "application/json",
                    "X-Taskname": task.name,
                    "X-Queuename": task.queue_name,
                },
            )
        except httpx.TransportError as e:
            logger.warning("Task %s: %s unreachable: %s", task.name, url, e)
            raise RetryableDelivery(str(e)) from e

        if response.is_success:
            return Outcome.ACK
        if response.is_client_error:
            logger.warning("Task %s dropped: %s replied %d: %s", task.name, url, response.status_code, response.text)
            return Outcome.DROP
        logger.warning("Task %s: %s replied %d", task.name, url, response.status_code)
        raise RetryableDelivery(f"{url} replied {response.status_code}")

    def deliver(self, task: Task) -> Outcome:
        url = self.target_url(task)
        if url is None:
            logger.error("Task %s dropped: no stage runs service %r", task.name, task.service)
            return Outcome.DROP

        retrying = Retrying(
            stop=stop_after_attempt(self.settings.RELAY_MAX_ATTEMPTS),
            wait=wait_exponential(multiplier=self.wait_multiplier, max=30),
            retry=retry_if_exception_type(RetryableDelivery),
        )
        try:
            outcome = retrying(self._post, url, task)
        except RetryError:
            logger.error("Task %s not delivered after %d attempts", task.name, self.settings.RELAY_MAX_ATTEMPTS)
            return Outcome.RETRY

        logger.debug("Task %s: %s", task.name, outcome.value)
        return outcome

    # --- Filesystem queue ---

    def drain_directory(self, queue: FileSystemQueue, queue_name: str) -> int:
        """Deliver the waiting tasks in order; stop at the first that must be retried.

        Returns the number of tasks removed from the queue.
        """
        removed = 0
        for path in queue.pending(queue_name):
            try:
                task = Task.from_message(path.read_bytes())
            except QueueError as e:
                logger.error("Rejecting %s: %s", path.name, e)
                path.rename(path.with_suffix(".rejected"))
                continue

            if self.deliver(task) == Outcome.RETRY:
                break
            path.unlink(missing_ok=True)
            removed += 1
        return removed

    def run_directory(self, queue: FileSystemQueue, queue_name: str, stop: threading.Event | None = None) -> None:
        """Poll `queue_name` until `stop` is set."""
        stop = stop or threading.Event()
        directory: Path = queue.directory(queue_name)
        logger.info("Relaying tasks from %s", directory)
        while not stop.is_set():
            self.drain_directory(queue, queue_name)
            stop.wait(self.settings.RELAY_POLL_SECONDS)

    # --- RabbitMQ ---

    def on_message(self, channel, method, properties, body: bytes) -> None:
        """Hand the delivery to a worker thread so the connection keeps serving heartbeats."""
        try:
            task = Task.from_message(body)
        except QueueError as e:
            logger.error("Rejecting message %s: %s", method.delivery_tag, e)
            channel.basic_reject(delivery_tag=method.delivery_tag, requeue=False)
            return

        self._workers = [t for t in self._workers if t.is_alive()]
        worker = threading.Thread(
            target=self._deliver_message,
            args=(channel.connection, channel, method.delivery_tag, task),
            name=f"relay-{task.name}",
            daemon=True,
        )
        self._workers.append(worker)
        worker.start()

    def _deliver_message(self, connection, channel, delivery_tag: int, task: Task) -> None:
        outcome = self.deliver(task)
        # Channel methods may only be called from the connection's thread
        try:
            connection.add_callback_threadsafe(functools.partial(self._settle, channel, delivery_tag, outcome))
        except AMQPError as e:
            logger.warning("Message %s not settled, connection closed: %s", delivery_tag, e)

    @staticmethod
    def _settle(channel, delivery_tag: int, outcome: Outcome) -> None:
        if not channel.is_open:
            logger.warning("Channel closed before message %s was settled; the broker will redeliver it", delivery_tag)
            return
        if outcome == Outcome.RETRY:
            channel.basic_nack(delivery_tag=delivery_tag, requeue=True)
        else:
            channel.basic_ack(delivery_tag=delivery_tag)

    def join_workers(self) -> None:
        for worker in self._workers:
            worker.join()
        self._workers = []

    def consume(self, queue: RabbitMQQueue, queue_name: str) -> None:
        """Consume `queue_name` until interrupted, reconnecting after broker errors."""
        while True:
            try:
                connection = queue.open_connection()
                channel = connection.channel()
                channel.queue_declare(queue=queue_name, durable=True)
                channel.basic_qos(prefetch_count=1)
                channel.basic_consume(queue=queue_name, on_message_callback=self.on_message)
                logger.info("Relaying tasks from RabbitMQ queue %s", queue_name)
                channel.start_consuming()
            except AMQPError as e:
                logger.warning("RabbitMQ connection lost: %s; reconnecting in %ss", e, self.settings.RELAY_POLL_SECONDS)
                time.sleep(self.settings.RELAY_POLL_SECONDS)
            finally:
                self.join_workers()
