"""Request/response contract between execution contexts."""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter

from flow_story_generator.automation.workflow.models import Artifact, DownloadName, RunSettings


class StartRun(BaseModel):
    action: Literal["start_run"] = "start_run"
    prompts: list[str]
    reference_asset: bytes
    mime_type: str = "image/png"
    settings: RunSettings = Field(default_factory=RunSettings)


class PauseRun(BaseModel):
    action: Literal["pause_run"] = "pause_run"


class ResumeRun(BaseModel):
    action: Literal["resume_run"] = "resume_run"


class StopRun(BaseModel):
    action: Literal["stop_run"] = "stop_run"


class GetArtifacts(BaseModel):
    action: Literal["get_artifacts"] = "get_artifacts"


class ScanPage(BaseModel):
    action: Literal["scan_page"] = "scan_page"


class Ping(BaseModel):
    action: Literal["ping"] = "ping"


class EnqueueDownloads(BaseModel):
    action: Literal["enqueue_downloads"] = "enqueue_downloads"
    artifacts: list[Artifact]
    prefix: DownloadName = "story"
    delay_seconds: float = Field(default=0.5, ge=0)


class DownloadSingle(BaseModel):
    action: Literal["download_single"] = "download_single"
    locator: str
    filename: DownloadName = "flow_image.png"


class GetDownloadStatus(BaseModel):
    action: Literal["get_download_status"] = "get_download_status"


Request = Annotated[
    StartRun
    | PauseRun
    | ResumeRun
    | StopRun
    | GetArtifacts
    | ScanPage
    | Ping
    | EnqueueDownloads
    | DownloadSingle
    | GetDownloadStatus,
    Field(discriminator="action"),
]

request_adapter: TypeAdapter[Request] = TypeAdapter(Request)


class Accepted(BaseModel):
    accepted: bool
    total: int | None = None
    reason: str | None = None


class ArtifactList(BaseModel):
    artifacts: list[Artifact] = Field(default_factory=list)


class DownloadStatus(BaseModel):
    is_downloading: bool
    completed: int
    total: int


class Pong(BaseModel):
    pong: bool = True


class ButtonInfo(BaseModel):
    index: int
    aria_label: str | None = None
    text: str | None = None
    icon_text: str | None = None
    class_name: str = ""
    has_svg: bool = False
    visible: bool = False


class FileInputInfo(BaseModel):
    index: int
    accept: str = ""
    class_name: str = ""
    visible: bool = False


class TextareaInfo(BaseModel):
    index: int
    id: str = ""
    placeholder: str | None = None
    visible: bool = False


class ImageInfo(BaseModel):
    index: int
    alt: str | None = None
    has_source: bool = False


class ScanResult(BaseModel):
    buttons: list[ButtonInfo] = Field(default_factory=list)
    inputs: list[FileInputInfo] = Field(default_factory=list)
    textareas: list[TextareaInfo] = Field(default_factory=list)
    images: list[ImageInfo] = Field(default_factory=list)


Response = Accepted | ArtifactList | DownloadStatus | Pong | ScanResult
