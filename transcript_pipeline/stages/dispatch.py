"""Service dispatch: forwards each request to the first processing stage."""

import logging

from transcript_pipeline.context import StageContext
from transcript_pipeline.schemas.request import RequestRecord

logger = logging.getLogger(__name__)


def dispatch(record: RequestRecord, context: StageContext) -> RequestRecord:
    # Routing is entirely by configuration; the record passes through unchanged.
    logger.debug("Dispatching %s to %s", record.request_id, context.queue_info.service_to_handle)
    return record
