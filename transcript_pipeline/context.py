"""Per-process stage context, built once at startup and shared by every request."""

import logging
from dataclasses import dataclass

from transcript_pipeline.config import Settings, StageSettings, get_settings
from transcript_pipeline.services.queue import Queue, QueueInfo, queue_from_settings
from transcript_pipeline.services.recognition import GoogleSpeechRecognizer, Recognizer
from transcript_pipeline.services.repository import RequestRepository, SQLRequestRepository
from transcript_pipeline.services.tagging import Classifier, DLPClassifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StageContext:
    """Everything a stage needs to handle a task. Immutable after startup."""

    settings: Settings
    stage: StageSettings
    queue: Queue
    queue_info: QueueInfo
    repository: RequestRepository
    is_deployed: bool = False
    recognizer: Recognizer | None = None
    classifier: Classifier | None = None


def build_context(stage_key: str, settings: Settings | None = None) -> StageContext:
    """Wire the configured queue, repository and external clients for one stage."""
    from transcript_pipeline.database import SessionLocal

    settings = settings or get_settings()
    stage = settings.stage(stage_key)
    queue = queue_from_settings(settings)
    queue_info = QueueInfo.from_stage(stage)
    if not stage.is_terminal:
        queue.create(queue_info)

    for warning in settings.validate():
        logger.warning(warning)

    logger.info(
        "Stage %s (%s) writes to queue %r for service %r using %s",
        stage.key,
        stage.service_name,
        queue_info.name,
        queue_info.service_to_handle,
        type(queue).__name__,
    )

    return StageContext(
        settings=settings,
        stage=stage,
        queue=queue,
        queue_info=queue_info,
        repository=SQLRequestRepository(SessionLocal, settings.REQUESTS_COLLECTION),
        is_deployed=settings.IS_DEPLOYED,
        recognizer=GoogleSpeechRecognizer(timeout=settings.RECOGNITION_TIMEOUT_SECONDS)
        if stage.key == "TRANSCRIPTION"
        else None,
        classifier=DLPClassifier(settings.PROJECT_ID) if stage.key == "TAGGING" else None,
    )
