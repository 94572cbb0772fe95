"""Pipeline stages served by the generic task handler."""

from transcript_pipeline.stages.base import Stage
from transcript_pipeline.stages.completion import complete_record, completion_response
from transcript_pipeline.stages.dispatch import dispatch
from transcript_pipeline.stages.tagging import review_tags, tag_record
from transcript_pipeline.stages.transcription import transcribe_record

STAGES: dict[str, Stage] = {
    stage.key: stage
    for stage in (
        Stage(key="SERVICE_DISPATCH", label="ServiceDispatch", process=dispatch),
        Stage(key="TRANSCRIPTION", label="Transcription", process=transcribe_record),
        Stage(key="TAGGING", label="Tagging", process=tag_record),
        Stage(key="TAGGING_QA", label="TaggingQA", process=review_tags),
        Stage(
            key="COMPLETION",
            label="Completion",
            process=complete_record,
            handles_errors=True,
            respond=completion_response,
        ),
    )
}

__all__ = ["STAGES", "Stage"]
