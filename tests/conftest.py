"""Pytest configuration and fixtures."""

import uuid
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from transcript_pipeline.config import Settings
from transcript_pipeline.context import StageContext
from transcript_pipeline.database import Base
from transcript_pipeline.errors import QueueError
from transcript_pipeline.models.request_document import RequestDocument  # noqa: F401
from transcript_pipeline.schemas.request import RequestRecord
from transcript_pipeline.services.queue import MemoryQueue, QueueInfo, Task
from transcript_pipeline.services.repository import MemoryRequestRepository
from transcript_pipeline.timestamps import utc_now

MEDIA_URI = "gs://b/audio-01.mp3"


@pytest.fixture(name="session_factory")
def session_factory_fixture():
    """Create an in-memory SQLite database for tests."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(name="settings")
def settings_fixture() -> Settings:
    settings = Settings()
    settings.IS_DEPLOYED = False
    settings.QUEUE_BACKEND = "memory"
    return settings


@pytest.fixture(name="repository")
def repository_fixture() -> MemoryRequestRepository:
    return MemoryRequestRepository()


@pytest.fixture(name="queue")
def queue_fixture() -> MemoryQueue:
    return MemoryQueue()


class UnreachableQueue(MemoryQueue):
    """A MemoryQueue whose broker is down until `down` is cleared."""

    def __init__(self) -> None:
        super().__init__()
        self.down = True

    def add(self, info: QueueInfo, record: RequestRecord) -> Task:
        if self.down:
            raise QueueError("broker down")
        return super().add(info, record)


@pytest.fixture(name="unreachable_queue")
def unreachable_queue_fixture() -> UnreachableQueue:
    return UnreachableQueue()


@pytest.fixture(name="make_context")
def make_context_fixture(settings: Settings, repository: MemoryRequestRepository, queue: MemoryQueue):
    """Build a StageContext for a stage, backed by the in-memory repository and queue."""

    def _make(stage_key: str, **overrides) -> StageContext:
        stage = settings.stage(stage_key)
        values = {
            "settings": settings,
            "stage": stage,
            "queue": queue,
            "queue_info": QueueInfo.from_stage(stage),
            "repository": repository,
            "is_deployed": False,
            "recognizer": MagicMock(),
            "classifier": MagicMock(),
        }
        values.update(overrides)
        return StageContext(**values)

    return _make


@pytest.fixture(name="make_client")
def make_client_fixture(make_context):
    """Create a test client for one stage with rate limiting disabled."""
    from main import create_app
    from transcript_pipeline.rate_limit import limiter

    clients = []

    def _make(stage_key: str, context: StageContext | None = None) -> TestClient:
        app = create_app(stage_key, context or make_context(stage_key))
        client = TestClient(app)
        clients.append(client)
        return client

    limiter.enabled = False
    yield _make
    limiter.enabled = True
    for client in clients:
        client.close()


@pytest.fixture(name="make_record")
def make_record_fixture():
    """Build a RequestRecord as ingress would have accepted it."""

    def _make(**fields) -> RequestRecord:
        values = {
            "request_id": uuid.uuid4(),
            "customer_id": 1234567,
            "media_uri": MEDIA_URI,
            "accepted_at": utc_now(),
        }
        values.update(fields)
        return RequestRecord(**values)

    return _make

