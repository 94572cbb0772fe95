"""API routers."""

from transcript_pipeline.routers.requests import router as requests_router
from transcript_pipeline.routers.tasks import index_router, task_router

__all__ = ["requests_router", "index_router", "task_router"]
