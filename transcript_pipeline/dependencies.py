"""Dependencies for FastAPI routes."""

from fastapi import Request

from transcript_pipeline.context import StageContext


def get_context(request: Request) -> StageContext:
    """The stage context the application was created with."""
    return request.app.state.context
