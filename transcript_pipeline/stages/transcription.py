"""Transcription: speech recognition of the request's media file."""

import logging

from transcript_pipeline.context import StageContext
from transcript_pipeline.errors import InternalError
from transcript_pipeline.schemas.request import RequestRecord
from transcript_pipeline.services.recognition import transcribe

logger = logging.getLogger(__name__)


def transcribe_record(record: RequestRecord, context: StageContext) -> RequestRecord:
    """Set working_transcript from the primary recognition alternative."""
    if context.recognizer is None:
        raise InternalError("transcription stage started without a recognizer")

    transcript = transcribe(context.recognizer, record.media_uri)
    record.working_transcript = transcript.working_transcript
    logger.info(
        "Transcribed %s: %d alternatives, %d utterances",
        record.request_id,
        len(transcript.raw_transcript),
        len(transcript.attributed_strings[0]) if transcript.attributed_strings else 0,
    )
    return record
