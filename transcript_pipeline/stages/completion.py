"""Completion: finalize the transcript and close out the request."""

import logging

from transcript_pipeline.context import StageContext
from transcript_pipeline.schemas.request import CompletionResponse, RequestRecord, Status
from transcript_pipeline.timestamps import utc_now

logger = logging.getLogger(__name__)

EMPTY_TRANSCRIPT = "empty transcript"


def complete_record(record: RequestRecord, context: StageContext) -> RequestRecord:
    """Turn soft separators into newlines and mark the request COMPLETED.

    A request that arrives in ERROR, or with nothing transcribed, is closed
    out as ERROR instead.
    """
    record.completed_at = utc_now()

    if record.status == Status.ERROR:
        logger.info("Request %s ended in error: %s", record.request_id, record.error_reason)
        return record

    if not record.working_transcript:
        record.status = Status.ERROR
        record.error_reason = EMPTY_TRANSCRIPT
        logger.info("Request %s ended in error: %s", record.request_id, EMPTY_TRANSCRIPT)
        return record

    record.final_transcript = record.working_transcript.replace("|", "\n")
    record.status = Status.COMPLETED
    if record.accepted_at:
        logger.info("Request %s completed in %s", record.request_id, record.request_duration())
    return record


def completion_response(record: RequestRecord) -> CompletionResponse:
    return CompletionResponse(
        request_id=record.request_id,
        customer_id=record.customer_id,
        media_uri=record.media_uri,
        accepted_at=record.accepted_at,
        completed_at=record.completed_at,
        transcript=record.final_transcript,
    )
