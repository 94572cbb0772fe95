"""Tagging and tagging QA: find sensitive information, then keep the best tag per category."""

import logging

from transcript_pipeline.context import StageContext
from transcript_pipeline.errors import InternalError
from transcript_pipeline.schemas.request import RequestRecord
from transcript_pipeline.services.tagging import reorg_matched_tags

logger = logging.getLogger(__name__)


def tag_record(record: RequestRecord, context: StageContext) -> RequestRecord:
    """Classify the working transcript; matched_tags becomes quote-keyed."""
    if context.classifier is None:
        raise InternalError("tagging stage started without a classifier")

    record.matched_tags = context.classifier.classify(record.working_transcript)
    logger.info("Tagged %s: %d quotes", record.request_id, len(record.matched_tags))
    return record


def review_tags(record: RequestRecord, context: StageContext) -> RequestRecord:
    """Re-key matched_tags by info type."""
    record = reorg_matched_tags(record)
    logger.info("Reviewed tags for %s: %s", record.request_id, ", ".join(sorted(record.matched_tags)) or "none")
    return record
