"""Pydantic models for the REST server."""

from __future__ import annotations

from pydantic import BaseModel, Field

from flow_story_generator.automation.control import ControlStatus
from flow_story_generator.automation.messaging.messages import DownloadStatus
from flow_story_generator.automation.workflow.controller import RunSnapshot
from flow_story_generator.automation.workflow.models import DownloadName, RunSettings


class StartRunRequest(BaseModel):
    """Start a run.

    Either `prompts` or `prompts_text` (one prompt per line) may be given; when
    both are missing, or `reference_asset` is missing, the saved session fills in.
    """

    prompts: list[str] | None = None
    prompts_text: str | None = None
    reference_asset: str | None = Field(
        default=None, description="Reference image as a base64 data: URL"
    )
    settings: RunSettings | None = None


class DownloadRequest(BaseModel):
    prefix: DownloadName = "story"
    delay_seconds: float | None = Field(default=None, ge=0)


class SingleDownloadRequest(BaseModel):
    locator: str
    filename: DownloadName = "flow_image.png"


class ApiStatus(BaseModel):
    run: RunSnapshot
    control: ControlStatus
    downloads: DownloadStatus | None = None
