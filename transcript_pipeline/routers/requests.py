"""Client-facing request API, served by the ingress stage."""

import logging
import uuid

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from transcript_pipeline.config import get_settings
from transcript_pipeline.context import StageContext
from transcript_pipeline.dependencies import get_context
from transcript_pipeline.errors import AcceptError, CreateError, QueueError, UpdateError, ValidationError
from transcript_pipeline.rate_limit import limiter
from transcript_pipeline.schemas.request import (
    NewRequest,
    PostResponse,
    RequestRecord,
    RequestStatusResponse,
    Status,
)
from transcript_pipeline.services.decoding import decode_json_body
from transcript_pipeline.timestamps import utc_now

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/requests", tags=["Requests"])


def abandon_request(context: StageContext, record: RequestRecord, error: QueueError) -> None:
    """Close out a stored request that never reached the first queue."""
    logger.error("Request %s stored but not queued: %s", record.request_id, error)
    record.status = Status.ERROR
    record.original_status = AcceptError.status_code
    record.error_reason = f"not queued: {error}"
    try:
        context.repository.update(record)
    except UpdateError as e:
        logger.error("Request %s left PENDING: %s", record.request_id, e)


def accept_request(context: StageContext, new_request: NewRequest, accepted_at: str) -> RequestRecord:
    """Assign an id, persist the record and queue it for the first stage."""
    record = RequestRecord(
        request_id=uuid.uuid4(),
        customer_id=new_request.customer_id,
        media_uri=new_request.media_uri,
        status=Status.PENDING,
        accepted_at=accepted_at,
    )
    duration = record.add_timestamps("BeginIngress", accepted_at, "EndIngress")
    record.updated_at = record.timestamps["EndIngress"]

    try:
        context.repository.create(record)
    except CreateError as e:
        raise AcceptError(f"storing request failed: {e}", cause=e) from e

    try:
        context.queue.add(context.queue_info, record)
    except QueueError as e:
        abandon_request(context, record, e)
        raise AcceptError(f"queueing request {record.request_id} failed: {e}", cause=e) from e

    logger.info("Accepted request %s for customer %d in %s", record.request_id, record.customer_id, duration)
    return record


@router.post("", response_model=PostResponse)
@limiter.limit(get_settings().INGRESS_RATE_LIMIT)
async def create_request(request: Request, context: StageContext = Depends(get_context)) -> PostResponse:
    """Accept a transcription request."""
    accepted_at = utc_now()
    new_request = await decode_json_body(request, NewRequest)
    record = await run_in_threadpool(accept_request, context, new_request, accepted_at)

    return PostResponse(
        request_id=record.request_id,
        customer_id=record.customer_id,
        media_uri=record.media_uri,
        accepted_at=record.accepted_at,
        poll_endpoint=str(request.url_for("get_request", request_id=str(record.request_id))),
    )


@router.get("/{request_id}", response_model=RequestStatusResponse, response_model_exclude_none=True)
def get_request(request_id: str, context: StageContext = Depends(get_context)) -> RequestStatusResponse:
    """Poll a request's progress."""
    try:
        parsed = uuid.UUID(request_id)
    except ValueError as e:
        raise ValidationError(f"Invalid request_id: {request_id!r}", cause=e) from e
    if parsed.int == 0:
        raise ValidationError(f"Invalid request_id: {request_id!r}")

    record = context.repository.find_by_id(parsed)
    return RequestStatusResponse(
        request_id=record.request_id,
        customer_id=record.customer_id,
        media_uri=record.media_uri,
        status=record.status,
        accepted_at=record.accepted_at,
        completed_at=record.completed_at or None,
        transcript=record.final_transcript or None,
        error_reason=record.error_reason or None,
    )
