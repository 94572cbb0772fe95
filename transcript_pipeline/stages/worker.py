"""The generic stage worker: one task in, one merged record persisted and forwarded."""

import logging
from dataclasses import dataclass
from datetime import timedelta

from transcript_pipeline.context import StageContext
from transcript_pipeline.errors import PipelineError, TimestampsKeyExists, ZeroIdError
from transcript_pipeline.schemas.request import RequestRecord, Status
from transcript_pipeline.stages.base import Stage

logger = logging.getLogger(__name__)


@dataclass
class TaskResult:
    record: RequestRecord
    duration: timedelta


def check_request_id(record: RequestRecord, context: StageContext) -> None:
    """In deployed mode a zero request_id means an upstream stage lost it."""
    if context.is_deployed and not record.has_id:
        raise ZeroIdError()


def _forward(record: RequestRecord, context: StageContext) -> None:
    if not context.stage.is_terminal:
        context.queue.add(context.queue_info, record)


def handle_task(stage: Stage, context: StageContext, record: RequestRecord, start_timestamp: str) -> TaskResult:
    """Run `stage` on one delivered record.

    The order is: refuse duplicates, work, timestamp, merge-write, enqueue.
    Terminal errors mark the record ERROR, which is still persisted and
    forwarded before the error is re-raised for the 4xx reply.
    """
    stored = context.repository.find_by_id(record.request_id)
    if stage.begin_key in stored.timestamps:
        # Already handled; forward again in case the earlier enqueue was lost
        _forward(stored, context)
        raise TimestampsKeyExists(stage.begin_key)

    terminal_error: PipelineError | None = None
    if record.status == Status.ERROR and not stage.handles_errors:
        logger.info("%s: passing %s through in ERROR: %s", stage.label, record.request_id, record.error_reason)
    else:
        try:
            record = stage.process(record, context)
        except PipelineError as e:
            if not e.terminal:
                raise
            logger.warning("%s: request %s failed: %s", stage.label, record.request_id, e)
            record.status = Status.ERROR
            record.original_status = e.status_code
            record.error_reason = e.message
            terminal_error = e

    duration = record.add_timestamps(stage.begin_key, start_timestamp, stage.end_key)
    record = context.repository.update(record)
    _forward(record, context)

    if terminal_error is not None:
        raise terminal_error
    return TaskResult(record=record, duration=duration)
