"""What a task-handling stage is: a label, a work function and an optional reply."""

from collections.abc import Callable
from dataclasses import dataclass

from pydantic import BaseModel

from transcript_pipeline.context import StageContext
from transcript_pipeline.schemas.request import RequestRecord

ProcessFn = Callable[[RequestRecord, StageContext], RequestRecord]
RespondFn = Callable[[RequestRecord], BaseModel]


@dataclass(frozen=True)
class Stage:
    """A pipeline stage served by the generic task handler.

    `label` names the stage's Begin/End timestamp keys. Stages that do not
    handle errors pass ERROR records through untouched.
    """

    key: str
    label: str
    process: ProcessFn
    handles_errors: bool = False
    respond: RespondFn | None = None

    @property
    def begin_key(self) -> str:
        return f"Begin{self.label}"

    @property
    def end_key(self) -> str:
        return f"End{self.label}"
