"""Tests for the generic task handler shared by every stage."""

import uuid

import pytest

from transcript_pipeline.errors import BadMediaUri, ExternalTransient
from transcript_pipeline.schemas.request import NIL_UUID, RequestRecord, Status
from transcript_pipeline.stages import STAGES
from transcript_pipeline.timestamps import parse_rfc3339_nano

TASK_HEADERS = {"Content-Type": "application/json", "X-Taskname": "task-1", "X-Queuename": "test-queue"}


def _post_task(client, record: RequestRecord, headers: dict | None = None):
    return client.post("/task_handler", content=record.to_wire(), headers=headers or TASK_HEADERS)


class TestIndex:
    @pytest.mark.parametrize(
        "stage_key, service",
        [("SERVICE_DISPATCH", "service-dispatch"), ("TRANSCRIPTION", "transcription"), ("COMPLETION", "completion")],
    )
    def test_running(self, make_client, stage_key, service):
        resp = make_client(stage_key).get("/")
        assert resp.status_code == 200
        assert resp.text == f'"{service}" service running\n'

    def test_unknown_path(self, make_client):
        assert make_client("TAGGING").get("/elsewhere").status_code == 404


class TestTaskValidation:
    """Tests for the checks made before any work is done."""

    def test_missing_task_name(self, make_client, repository, make_record):
        record = make_record()
        repository.create(record)
        resp = _post_task(make_client("SERVICE_DISPATCH"), record, headers={"Content-Type": "application/json"})

        assert resp.status_code == 400
        assert resp.text == "Bad Request - Invalid Task"

    def test_app_engine_task_header(self, make_client, repository, make_record):
        record = make_record()
        repository.create(record)
        headers = {"Content-Type": "application/json", "X-AppEngine-TaskName": "gae-task"}

        assert _post_task(make_client("SERVICE_DISPATCH"), record, headers=headers).status_code == 200

    def test_wrong_content_type(self, make_client, make_record):
        headers = {**TASK_HEADERS, "Content-Type": "text/plain"}
        resp = _post_task(make_client("SERVICE_DISPATCH"), make_record(), headers=headers)
        assert resp.status_code == 415

    def test_unknown_field(self, make_client):
        resp = make_client("SERVICE_DISPATCH").post(
            "/task_handler",
            content=b'{"customer_id": 1, "media_uri": "gs://b/a.mp3", "surprise": true}',
            headers=TASK_HEADERS,
        )
        assert resp.status_code == 400
        assert 'unknown field "surprise"' in resp.text

    def test_invalid_record(self, make_client):
        resp = make_client("SERVICE_DISPATCH").post(
            "/task_handler",
            content=b'{"customer_id": 0, "media_uri": "gs://b/a.mp3"}',
            headers=TASK_HEADERS,
        )
        assert resp.status_code == 400

    def test_zero_id_when_deployed(self, make_client, make_context, make_record):
        context = make_context("SERVICE_DISPATCH", is_deployed=True)
        resp = _post_task(make_client("SERVICE_DISPATCH", context), make_record(request_id=NIL_UUID))
        assert resp.status_code == 500

    def test_unknown_request(self, make_client, make_record):
        resp = _post_task(make_client("SERVICE_DISPATCH"), make_record())
        assert resp.status_code == 404


class TestTaskFlow:
    """Tests for work, persistence and forwarding."""

    def test_dispatch_forwards_unchanged(self, make_client, repository, queue, make_record):
        record = make_record(timestamps={"BeginIngress": "2020-01-01T00:00:00Z", "EndIngress": "2020-01-01T00:00:01Z"})
        repository.create(record)

        resp = _post_task(make_client("SERVICE_DISPATCH"), record)
        assert resp.status_code == 200

        tasks = queue.tasks("transcription")
        assert len(tasks) == 1
        assert tasks[0].service == "transcription"
        forwarded = RequestRecord.model_validate_json(tasks[0].body)
        assert forwarded.request_id == record.request_id
        assert forwarded.media_uri == record.media_uri
        assert {"BeginIngress", "EndIngress", "BeginServiceDispatch", "EndServiceDispatch"} <= set(forwarded.timestamps)

        stored = repository.find_by_id(record.request_id)
        assert stored.timestamps == forwarded.timestamps
        assert stored.updated_at

    def test_begin_never_after_end(self, make_client, repository, make_record):
        record = make_record()
        repository.create(record)
        _post_task(make_client("SERVICE_DISPATCH"), record)

        timestamps = repository.find_by_id(record.request_id).timestamps
        assert parse_rfc3339_nano(timestamps["BeginServiceDispatch"]) <= parse_rfc3339_nano(timestamps["EndServiceDispatch"])

    def test_duplicate_refused(self, make_client, repository, queue, make_record):
        record = make_record()
        repository.create(record)
        client = make_client("SERVICE_DISPATCH")

        assert _post_task(client, record).status_code == 200
        stored = repository.find_by_id(record.request_id)

        resp = _post_task(client, record)
        assert resp.status_code == 409
        assert resp.text == "Timestamps key exists: BeginServiceDispatch"
        assert repository.find_by_id(record.request_id) == stored
        # the stored record is forwarded again so a lost enqueue is recovered
        assert len(queue.tasks("transcription")) == 2

    def test_enqueue_failure_is_retried(self, make_client, make_context, repository, unreachable_queue, make_record):
        record = make_record()
        repository.create(record)
        client = make_client("SERVICE_DISPATCH", make_context("SERVICE_DISPATCH", queue=unreachable_queue))

        resp = _post_task(client, record)
        assert resp.status_code == 503
        assert resp.text == "broker down"
        assert "EndServiceDispatch" in repository.find_by_id(record.request_id).timestamps
        assert unreachable_queue.tasks("transcription") == []

        # the redelivery is refused but forwards the stored record
        unreachable_queue.down = False
        resp = _post_task(client, record)
        assert resp.status_code == 409

        tasks = unreachable_queue.tasks("transcription")
        assert len(tasks) == 1
        forwarded = RequestRecord.model_validate_json(tasks[0].body)
        assert forwarded == repository.find_by_id(record.request_id)

    def test_transient_error_leaves_record(self, make_client, make_context, repository, queue, make_record):
        context = make_context("TRANSCRIPTION")
        context.recognizer.recognize.side_effect = ExternalTransient("speech service unavailable")
        record = make_record()
        repository.create(record)

        resp = _post_task(make_client("TRANSCRIPTION", context), record)

        assert resp.status_code == 503
        assert repository.find_by_id(record.request_id) == record
        assert queue.tasks("tagging") == []

    def test_terminal_error_marks_record(self, make_client, make_context, repository, queue, make_record):
        context = make_context("TRANSCRIPTION")
        context.recognizer.recognize.side_effect = BadMediaUri("Bad media_uri")
        record = make_record()
        repository.create(record)

        resp = _post_task(make_client("TRANSCRIPTION", context), record)

        assert resp.status_code == 400
        stored = repository.find_by_id(record.request_id)
        assert stored.status == Status.ERROR
        assert stored.original_status == 400
        assert stored.error_reason == "Bad media_uri"
        assert "EndTranscription" in stored.timestamps

        forwarded = RequestRecord.model_validate_json(queue.tasks("tagging")[0].body)
        assert forwarded.status == Status.ERROR

    def test_error_records_pass_through(self, make_client, make_context, repository, queue, make_record):
        context = make_context("TAGGING")
        record = make_record(status=Status.ERROR, error_reason="Bad media_uri", original_status=400)
        repository.create(record)

        resp = _post_task(make_client("TAGGING", context), record)

        assert resp.status_code == 200
        context.classifier.classify.assert_not_called()
        assert "EndTagging" in repository.find_by_id(record.request_id).timestamps
        assert len(queue.tasks("tagging-qa")) == 1


class TestStageRegistry:
    def test_labels(self):
        assert {key: stage.label for key, stage in STAGES.items()} == {
            "SERVICE_DISPATCH": "ServiceDispatch",
            "TRANSCRIPTION": "Transcription",
            "TAGGING": "Tagging",
            "TAGGING_QA": "TaggingQA",
            "COMPLETION": "Completion",
        }

    def test_only_completion_handles_errors(self):
        assert [key for key, stage in STAGES.items() if stage.handles_errors] == ["COMPLETION"]

    def test_unknown_stage_app(self, make_context):
        from main import create_app

        with pytest.raises(KeyError):
            create_app("NOT_A_STAGE", make_context("TAGGING"))


def test_request_ids_are_independent(make_client, repository, make_record):
    client = make_client("SERVICE_DISPATCH")
    records = [make_record() for _ in range(3)]
    for record in records:
        repository.create(record)

    assert [_post_task(client, r).status_code for r in records] == [200, 200, 200]
    assert all("BeginServiceDispatch" in repository.find_by_id(r.request_id).timestamps for r in records)
    assert uuid.UUID(int=0) not in {r.request_id for r in records}
