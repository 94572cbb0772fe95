"""Task-delivery endpoints shared by every stage."""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse, Response
from starlette.concurrency import run_in_threadpool

from transcript_pipeline.context import StageContext
from transcript_pipeline.dependencies import get_context
from transcript_pipeline.errors import InvalidTask
from transcript_pipeline.schemas.request import RequestRecord
from transcript_pipeline.services.decoding import decode_json_body
from transcript_pipeline.stages import Stage
from transcript_pipeline.stages.worker import check_request_id, handle_task
from transcript_pipeline.timestamps import utc_now

logger = logging.getLogger(__name__)

TASK_NAME_HEADERS = ("X-Taskname", "X-AppEngine-TaskName")
QUEUE_NAME_HEADERS = ("X-Queuename", "X-AppEngine-QueueName")


def _first_header(request: Request, names: tuple[str, ...]) -> str:
    for name in names:
        value = request.headers.get(name)
        if value:
            return value
    return ""


def index_router() -> APIRouter:
    router = APIRouter()

    @router.get("/", response_class=PlainTextResponse)
    def index(context: StageContext = Depends(get_context)) -> str:
        """Liveness check."""
        return f'"{context.stage.service_name}" service running\n'

    return router


def task_router(stage: Stage) -> APIRouter:
    """Routes for a task-handling stage: liveness and POST /task_handler."""
    router = index_router()

    @router.post("/task_handler")
    async def task_handler(request: Request, context: StageContext = Depends(get_context)) -> Response:
        start_timestamp = utc_now()

        task_name = _first_header(request, TASK_NAME_HEADERS)
        if not task_name:
            raise InvalidTask("Bad Request - Invalid Task")
        queue_name = _first_header(request, QUEUE_NAME_HEADERS)

        record = await decode_json_body(request, RequestRecord)
        check_request_id(record, context)

        result = await run_in_threadpool(handle_task, stage, context, record, start_timestamp)

        logger.info(
            "%s completed in %s: queue %r, task %r, request %s",
            context.stage.service_name,
            result.duration,
            queue_name,
            task_name,
            result.record.request_id,
        )

        if stage.respond is not None:
            return Response(content=stage.respond(result.record).model_dump_json(), media_type="application/json")
        return Response(status_code=200)

    return router
