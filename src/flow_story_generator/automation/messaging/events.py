"""Broadcast events.

Events are transient. Emission order is preserved per emitter; nothing is
guaranteed across emitters or for listeners that are not attached.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter

from flow_story_generator.automation.workflow.models import Artifact


class Severity(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class ProgressEvent(BaseModel):
    type: Literal["progress"] = "progress"
    current: int = Field(ge=0)
    total: int = Field(ge=0)
    prompt: str = ""


class LogEvent(BaseModel):
    type: Literal["log"] = "log"
    message: str
    severity: Severity = Severity.INFO


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str
    fatal: bool = False


class DownloadProgressEvent(BaseModel):
    type: Literal["download_progress"] = "download_progress"
    current: int
    total: int
    filename: str


class DownloadCompleteEvent(BaseModel):
    type: Literal["download_complete"] = "download_complete"
    total: int


class GenerationCompleteEvent(BaseModel):
    type: Literal["generation_complete"] = "generation_complete"
    total: int
    artifacts: list[Artifact] = Field(default_factory=list)


Event = Annotated[
    ProgressEvent
    | LogEvent
    | ErrorEvent
    | DownloadProgressEvent
    | DownloadCompleteEvent
    | GenerationCompleteEvent,
    Field(discriminator="type"),
]

event_adapter: TypeAdapter[Event] = TypeAdapter(Event)
