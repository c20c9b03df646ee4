"""Operator control surface.

Runs as its own execution context: it sends requests to the workflow and
download contexts and folds the broadcasts it receives into a status view
(progress, bounded activity log, download progress, last result).
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from flow_story_generator.automation.messaging.bus import ExecutionContext, MessageHub
from flow_story_generator.automation.messaging.events import (
    DownloadCompleteEvent,
    DownloadProgressEvent,
    ErrorEvent,
    Event,
    GenerationCompleteEvent,
    LogEvent,
    ProgressEvent,
    Severity,
)
from flow_story_generator.automation.messaging.messages import (
    Accepted,
    ArtifactList,
    DownloadSingle,
    DownloadStatus,
    EnqueueDownloads,
    GetArtifacts,
    GetDownloadStatus,
    PauseRun,
    Ping,
    Pong,
    ResumeRun,
    ScanPage,
    ScanResult,
    StartRun,
    StopRun,
)
from flow_story_generator.automation.workflow.models import Artifact, ReferenceAsset, RunSettings

logger = logging.getLogger(__name__)

CONTROL_CONTEXT = "control"
WORKFLOW_CONTEXT = "workflow"
DOWNLOADS_CONTEXT = "downloads"

EventListener = Callable[[Event], None]


class LogEntry(BaseModel):
    timestamp: str
    message: str
    severity: Severity


class ControlStatus(BaseModel):
    connection: str
    progress: ProgressEvent | None = None
    downloads: DownloadProgressEvent | None = None
    last_generation: GenerationCompleteEvent | None = None
    downloaded_total: int | None = None
    logs: list[LogEntry] = Field(default_factory=list)


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


_NO_ANSWER = "Communication error: {target} did not answer"


class ControlSurface:
    """Operator-facing side of the hub.

    Requests go out through the hub and come back as typed responses, or
    `None` when the recipient could not be reached. Activity reported by the
    other contexts arrives as broadcasts and lands in the bounded log.
    """

    def __init__(
        self,
        hub: MessageHub,
        *,
        log_limit: int = 100,
        listener: EventListener | None = None,
    ) -> None:
        self._hub = hub
        self._listener = listener
        self.context = ExecutionContext(CONTROL_CONTEXT, on_event=self._on_event)

        self._logs: deque[LogEntry] = deque(maxlen=log_limit)
        self._connection = "connected"
        self._progress: ProgressEvent | None = None
        self._downloads: DownloadProgressEvent | None = None
        self._last_generation: GenerationCompleteEvent | None = None
        self._downloaded_total: int | None = None
        self._generation_done = asyncio.Event()
        self._downloads_done = asyncio.Event()

    def attach(self) -> None:
        self.context.start()
        self._hub.attach_control_surface(self.context)

    async def detach(self) -> None:
        self._hub.detach_control_surface()
        await self.context.close()

    # -- local log --------------------------------------------------------

    def log(self, message: str, severity: Severity = Severity.INFO) -> None:
        self._logs.append(LogEntry(timestamp=_now_iso(), message=message, severity=severity))

    def clear_log(self) -> None:
        self._logs.clear()
        self.log("Log cleared")

    def status(self) -> ControlStatus:
        return ControlStatus(
            connection=self._connection,
            progress=self._progress,
            downloads=self._downloads,
            last_generation=self._last_generation,
            downloaded_total=self._downloaded_total,
            logs=list(self._logs),
        )

    # -- requests ---------------------------------------------------------

    async def _ask_workflow(self, message: BaseModel) -> Accepted | None:
        response = await self._hub.request(WORKFLOW_CONTEXT, message)
        if not isinstance(response, Accepted):
            self.log(_NO_ANSWER.format(target="workflow page"), Severity.ERROR)
            return None
        if not response.accepted and response.reason:
            self.log(response.reason, Severity.WARNING)
        return response

    async def start_run(
        self, prompts: list[str], asset: ReferenceAsset | None, settings: RunSettings
    ) -> Accepted | None:
        if asset is None:
            self.log("Please upload a character image first", Severity.ERROR)
            return Accepted(accepted=False, reason="Please upload a character image first")

        self._generation_done.clear()
        self._progress = None
        response = await self._ask_workflow(
            StartRun(
                prompts=prompts,
                reference_asset=asset.data,
                mime_type=asset.mime_type,
                settings=settings,
            )
        )
        if response is not None and response.accepted:
            self._connection = "processing"
        return response

    async def pause_run(self) -> Accepted | None:
        return await self._ask_workflow(PauseRun())

    async def resume_run(self) -> Accepted | None:
        response = await self._ask_workflow(ResumeRun())
        if response is not None and response.accepted:
            self._connection = "processing"
        return response

    async def stop_run(self) -> Accepted | None:
        response = await self._ask_workflow(StopRun())
        if response is not None and response.accepted:
            self._connection = "connected"
        return response

    async def get_artifacts(self) -> list[Artifact] | None:
        response = await self._hub.request(WORKFLOW_CONTEXT, GetArtifacts())
        if not isinstance(response, ArtifactList):
            self.log(_NO_ANSWER.format(target="workflow page"), Severity.ERROR)
            return None
        return list(response.artifacts)

    async def download_all(self, prefix: str = "story", delay_seconds: float = 0.5) -> Accepted:
        """Ask the page for its artifacts, then hand them to the download queue."""

        self.log("Fetching images from page...")
        artifacts = await self.get_artifacts()
        if not artifacts:
            self.log("No images found to download", Severity.WARNING)
            return Accepted(accepted=False, total=0, reason="No images found to download")

        self._downloads_done.clear()
        self._downloaded_total = None
        response = await self._hub.request(
            DOWNLOADS_CONTEXT,
            EnqueueDownloads(artifacts=artifacts, prefix=prefix or "story", delay_seconds=delay_seconds),
        )
        if not isinstance(response, Accepted):
            self.log(_NO_ANSWER.format(target="download queue"), Severity.ERROR)
            return Accepted(accepted=False, reason="Download queue unavailable")
        if not response.accepted:
            self.log(response.reason or "Download rejected", Severity.WARNING)
        return response

    async def download_single(self, locator: str, filename: str) -> Accepted | None:
        response = await self._hub.request(
            DOWNLOADS_CONTEXT, DownloadSingle(locator=locator, filename=filename)
        )
        return response if isinstance(response, Accepted) else None

    async def download_status(self) -> DownloadStatus | None:
        response = await self._hub.request(DOWNLOADS_CONTEXT, GetDownloadStatus())
        return response if isinstance(response, DownloadStatus) else None

    async def scan_page(self) -> ScanResult | None:
        self.log("Scanning page for elements...")
        response = await self._hub.request(WORKFLOW_CONTEXT, ScanPage())
        if not isinstance(response, ScanResult):
            self.log("Failed to scan page - make sure you are on Google Flow", Severity.ERROR)
            return None
        return response

    async def ping(self) -> bool:
        return isinstance(await self._hub.request(WORKFLOW_CONTEXT, Ping()), Pong)

    async def wait_for_generation(self, timeout: float | None = None) -> GenerationCompleteEvent:
        await asyncio.wait_for(self._generation_done.wait(), timeout=timeout)
        assert self._last_generation is not None
        return self._last_generation

    async def wait_for_downloads(self, timeout: float | None = None) -> int:
        await asyncio.wait_for(self._downloads_done.wait(), timeout=timeout)
        return self._downloaded_total or 0

    # -- broadcasts -------------------------------------------------------

    async def _on_event(self, event: Event) -> None:
        if isinstance(event, ProgressEvent):
            self._progress = event
        elif isinstance(event, LogEvent):
            self.log(event.message, event.severity)
        elif isinstance(event, ErrorEvent):
            self.log(event.message, Severity.ERROR)
        elif isinstance(event, GenerationCompleteEvent):
            self._last_generation = event
            self._connection = "connected"
            self.log(f"Generation complete! {event.total} images created.", Severity.SUCCESS)
            self._generation_done.set()
        elif isinstance(event, DownloadProgressEvent):
            self._downloads = event
        elif isinstance(event, DownloadCompleteEvent):
            self._downloaded_total = event.total
            self._downloads = None
            self._downloads_done.set()

        if self._listener is not None:
            self._listener(event)
