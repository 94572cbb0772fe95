"""Tests for the delivery relay, with httpx.MockTransport standing in for the stages."""

import threading
from unittest.mock import MagicMock

import httpx
import pytest

from transcript_pipeline.config import Settings
from transcript_pipeline.services.queue import FileSystemQueue, QueueInfo, Task
from transcript_pipeline.services.relay import Outcome, Relay

INFO = QueueInfo(name="transcription", service_to_handle="transcription")


@pytest.fixture(name="relay_settings")
def relay_settings_fixture(settings: Settings, monkeypatch) -> Settings:
    monkeypatch.setenv("TRANSCRIPTION_URL", "http://transcription.test")
    settings.RELAY_MAX_ATTEMPTS = 3
    return settings


def _relay(settings: Settings, handler) -> tuple[Relay, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def _record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    client = httpx.Client(transport=httpx.MockTransport(_record))
    return Relay(settings, client=client, wait_multiplier=0), seen


class TestDeliver:
    """Tests for delivering one task."""

    def test_success_acknowledges(self, relay_settings, make_record):
        relay, seen = _relay(relay_settings, lambda request: httpx.Response(200))
        record = make_record()
        task = Task.for_record(INFO, record)

        assert relay.deliver(task) == Outcome.ACK

        assert len(seen) == 1
        request = seen[0]
        assert str(request.url) == "http://transcription.test/task_handler"
        assert request.headers["X-Taskname"] == task.name
        assert request.headers["X-Queuename"] == "transcription"
        assert request.headers["Content-Type"] == "application/json"
        assert request.content.decode() == record.to_wire()

    def test_client_error_drops(self, relay_settings, make_record):
        relay, seen = _relay(relay_settings, lambda request: httpx.Response(409, text="Timestamps key exists"))
        assert relay.deliver(Task.for_record(INFO, make_record())) == Outcome.DROP
        assert len(seen) == 1

    def test_server_error_retried_then_requeued(self, relay_settings, make_record):
        relay, seen = _relay(relay_settings, lambda request: httpx.Response(503))
        assert relay.deliver(Task.for_record(INFO, make_record())) == Outcome.RETRY
        assert len(seen) == 3

    def test_recovers_after_server_error(self, relay_settings, make_record):
        replies = iter([httpx.Response(500), httpx.Response(200)])
        relay, seen = _relay(relay_settings, lambda request: next(replies))
        assert relay.deliver(Task.for_record(INFO, make_record())) == Outcome.ACK
        assert len(seen) == 2

    def test_transport_error_retried(self, relay_settings, make_record):
        def _refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        relay, seen = _relay(relay_settings, _refuse)
        assert relay.deliver(Task.for_record(INFO, make_record())) == Outcome.RETRY
        assert len(seen) == 3

    def test_unknown_service_dropped(self, relay_settings, make_record):
        relay, seen = _relay(relay_settings, lambda request: httpx.Response(200))
        task = Task.for_record(QueueInfo(name="x", service_to_handle="nowhere"), make_record())
        assert relay.deliver(task) == Outcome.DROP
        assert seen == []


class TestDrainDirectory:
    """Tests for relaying the filesystem queue."""

    def test_delivered_tasks_removed(self, relay_settings, tmp_path, make_record):
        queue = FileSystemQueue(tmp_path)
        queue.add(INFO, make_record())
        queue.add(INFO, make_record())
        relay, seen = _relay(relay_settings, lambda request: httpx.Response(200))

        assert relay.drain_directory(queue, "transcription") == 2
        assert queue.pending("transcription") == []
        assert len(seen) == 2

    def test_stops_at_undeliverable_task(self, relay_settings, tmp_path, make_record):
        queue = FileSystemQueue(tmp_path)
        queue.add(INFO, make_record())
        queue.add(INFO, make_record())
        relay, seen = _relay(relay_settings, lambda request: httpx.Response(500))

        assert relay.drain_directory(queue, "transcription") == 0
        assert len(queue.pending("transcription")) == 2
        assert len(seen) == 3

    def test_rejects_malformed_files(self, relay_settings, tmp_path):
        queue = FileSystemQueue(tmp_path)
        (tmp_path / "transcription").mkdir()
        (tmp_path / "transcription" / "0001-bad.json").write_text("not json")
        relay, _ = _relay(relay_settings, lambda request: httpx.Response(200))

        assert relay.drain_directory(queue, "transcription") == 0
        assert (tmp_path / "transcription" / "0001-bad.rejected").exists()


class TestOnMessage:
    """Tests for settling RabbitMQ deliveries from the worker thread."""

    def _channel(self) -> tuple[MagicMock, list]:
        """A channel whose connection queues thread-safe callbacks instead of running them."""
        callbacks = []
        channel = MagicMock(is_open=True)
        channel.connection.add_callback_threadsafe.side_effect = callbacks.append
        return channel, callbacks

    def _deliver(self, relay: Relay, body: bytes) -> tuple[MagicMock, list]:
        channel, callbacks = self._channel()
        relay.on_message(channel, MagicMock(delivery_tag=7), None, body)
        relay.join_workers()
        return channel, callbacks

    def test_ack_issued_on_connection_thread(self, relay_settings, make_record):
        posting_threads = []

        def _reply(request):
            posting_threads.append(threading.current_thread())
            return httpx.Response(200)

        relay, seen = _relay(relay_settings, _reply)
        channel, callbacks = self._deliver(relay, Task.for_record(INFO, make_record()).to_message())

        assert len(seen) == 1
        assert posting_threads[0] is not threading.current_thread()
        assert len(callbacks) == 1
        channel.basic_ack.assert_not_called()

        callbacks[0]()
        channel.basic_ack.assert_called_once_with(delivery_tag=7)

    def test_dropped_task_acknowledged(self, relay_settings, make_record):
        relay, _ = _relay(relay_settings, lambda request: httpx.Response(409))
        channel, callbacks = self._deliver(relay, Task.for_record(INFO, make_record()).to_message())

        callbacks[0]()
        channel.basic_ack.assert_called_once_with(delivery_tag=7)

    def test_nack_requeues(self, relay_settings, make_record):
        relay, _ = _relay(relay_settings, lambda request: httpx.Response(502))
        channel, callbacks = self._deliver(relay, Task.for_record(INFO, make_record()).to_message())

        channel.basic_nack.assert_not_called()
        callbacks[0]()
        channel.basic_nack.assert_called_once_with(delivery_tag=7, requeue=True)
        channel.basic_ack.assert_not_called()

    def test_closed_channel_left_for_redelivery(self, relay_settings, make_record):
        relay, _ = _relay(relay_settings, lambda request: httpx.Response(200))
        channel, callbacks = self._deliver(relay, Task.for_record(INFO, make_record()).to_message())

        channel.is_open = False
        callbacks[0]()
        channel.basic_ack.assert_not_called()

    def test_malformed_rejected(self, relay_settings):
        relay, seen = _relay(relay_settings, lambda request: httpx.Response(200))
        channel, callbacks = self._deliver(relay, b"garbage")

        channel.basic_reject.assert_called_once_with(delivery_tag=7, requeue=False)
        assert seen == []
        assert callbacks == []
