"""Transcript Pipeline - staged media transcription services."""

import argparse
import logging
import os
import sys
import time

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from transcript_pipeline.config import DEFAULT_PORT, STAGE_KEYS, Settings, StageSettings, get_settings
from transcript_pipeline.context import StageContext, build_context
from transcript_pipeline.errors import PipelineError
from transcript_pipeline.rate_limit import limiter
from transcript_pipeline.routers import index_router, requests_router, task_router
from transcript_pipeline.services.queue import FileSystemQueue, RabbitMQQueue, queue_from_settings
from transcript_pipeline.services.relay import Relay
from transcript_pipeline.stages import STAGES

logger = logging.getLogger("transcript_pipeline")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


# --- Request logging middleware ---
class TaskLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        start = time.time()
        response = await call_next(request)
        duration_ms = (time.time() - start) * 1000

        task_name = request.headers.get("X-Taskname")
        logger.info(
            "%s %s -> %d (%.0fms)%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            f" task {task_name}" if task_name else "",
        )
        return response


def create_app(stage_key: str, context: StageContext) -> FastAPI:
    """Build the application serving one pipeline stage."""
    stage_key = stage_key.upper()
    app = FastAPI(title=f"Transcript Pipeline - {context.stage.service_name}", version="0.1.0")
    app.state.context = context
    app.state.limiter = limiter

    app.add_middleware(TaskLogMiddleware)

    if stage_key == "INGRESS":
        app.include_router(index_router())
        app.include_router(requests_router)
    elif stage_key in STAGES:
        app.include_router(task_router(STAGES[stage_key]))
    else:
        raise KeyError(f"unknown stage {stage_key!r}")

    # --- Pipeline errors carry their own status ---
    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(request: Request, exc: PipelineError) -> Response:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        else:
            logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
        return PlainTextResponse(exc.message, status_code=exc.status_code)

    # --- Rate limit error handler ---
    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> Response:
        return PlainTextResponse("Rate limit exceeded. Try again later.", status_code=429)

    # --- Unknown paths and methods ---
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
        return PlainTextResponse(str(exc.detail), status_code=exc.status_code)

    return app


def stage_key_for(name: str) -> str:
    """Accept "tagging-qa", "tagging_qa" or "TAGGING_QA"."""
    return name.strip().upper().replace("-", "_")


def resolve_port(cli_port: int | None, stage: StageSettings, settings: Settings) -> int:
    if cli_port:
        return cli_port
    if settings.IS_DEPLOYED and os.getenv("PORT"):
        return int(os.environ["PORT"])
    return stage.port or DEFAULT_PORT


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)


def build_parser() -> argparse.ArgumentParser:
    stage_names = [key.lower().replace("_", "-") for key in STAGE_KEYS]
    parser = argparse.ArgumentParser(
        description="Run one stage of the transcription pipeline, or the relay that delivers its tasks.",
        epilog="Stages: " + ", ".join(stage_names),
    )
    parser.add_argument("command", help="stage to serve, or 'relay'")
    parser.add_argument("relay_stage", nargs="?", help="with 'relay': the stage whose queue to deliver")
    parser.add_argument("--port", type=int, default=None, help=f"listen port (default {DEFAULT_PORT})")
    parser.add_argument("--v", "-v", dest="verbose", action="store_true", help="verbose logging")
    return parser


def run_relay(stage_key: str, settings: Settings) -> None:
    """Deliver the tasks written by `stage_key` to the next stage until interrupted."""
    stage = settings.stage(stage_key)
    if stage.is_terminal:
        raise SystemExit(f"stage {stage.key} is terminal and writes no tasks")

    queue = queue_from_settings(settings)
    relay = Relay(settings)
    if isinstance(queue, RabbitMQQueue):
        relay.consume(queue, stage.write_to_queue)
    elif isinstance(queue, FileSystemQueue):
        relay.run_directory(queue, stage.write_to_queue)
    else:
        raise SystemExit(f"QUEUE_BACKEND {settings.QUEUE_BACKEND!r} has nothing to relay")


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = get_settings()
    configure_logging(args.verbose or settings.DEBUG)

    try:
        if args.command == "relay":
            if not args.relay_stage:
                parser.error("relay needs the stage whose queue to deliver")
            run_relay(stage_key_for(args.relay_stage), settings)
            return

        stage_key = stage_key_for(args.command)
        if stage_key not in STAGE_KEYS:
            parser.error(f"unknown stage {args.command!r}")
        stage = settings.stage(stage_key)
        context = build_context(stage_key, settings)
    except PipelineError as e:
        logger.error("Startup failed: %s", e)
        sys.exit(1)

    port = resolve_port(args.port, stage, settings)
    logger.info(
        "Service %s listening on port %d, requests will be added to queue %r",
        stage.service_name,
        port,
        stage.write_to_queue,
    )
    uvicorn.run(create_app(stage_key, context), host="0.0.0.0", port=port, log_level="debug" if args.verbose else "info")


if __name__ == "__main__":
    main()
