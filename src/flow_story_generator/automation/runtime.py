"""Wires the execution contexts together for one attached Flow page.

    control surface --request--> workflow context  (run control, scan, artifacts)
    control surface --request--> downloads context (download queue)
    workflow/downloads --broadcast--> control surface (+ matching workflow tabs)

Nothing here touches the page directly; it only builds the pieces and routes
requests to them.
"""

from __future__ import annotations

import logging
from typing import Any

from flow_story_generator.automation.browser.scan import describe_scan, scan_page
from flow_story_generator.automation.config import FlowStorySettings
from flow_story_generator.automation.control import (
    DOWNLOADS_CONTEXT,
    WORKFLOW_CONTEXT,
    ControlSurface,
    EventListener,
)
from flow_story_generator.automation.downloads.fetcher import ArtifactFetcher
from flow_story_generator.automation.downloads.queue import DownloadQueue, Fetcher
from flow_story_generator.automation.messaging.bus import EventBus, ExecutionContext, MessageHub
from flow_story_generator.automation.messaging.events import Severity
from flow_story_generator.automation.messaging.messages import (
    Accepted,
    ArtifactList,
    DownloadSingle,
    EnqueueDownloads,
    GetArtifacts,
    GetDownloadStatus,
    PauseRun,
    Ping,
    Pong,
    Request,
    Response,
    ResumeRun,
    ScanPage,
    StartRun,
    StopRun,
)
from flow_story_generator.automation.workflow.controller import AutomationController
from flow_story_generator.automation.workflow.locators import Locators
from flow_story_generator.automation.workflow.models import ReferenceAsset
from flow_story_generator.automation.workflow.steps import StepExecutor, StepTimings
from flow_story_generator.automation.workflow.waiting import ChangeSource, WaitPrimitive

logger = logging.getLogger(__name__)


class FlowStoryRuntime:
    """All contexts for one page, usable as an async context manager."""

    def __init__(
        self,
        page: Any,
        settings: FlowStorySettings,
        *,
        change_source: ChangeSource | None = None,
        fetcher: Fetcher | None = None,
        locators: Locators | None = None,
        timings: StepTimings | None = None,
        origin: str | None = None,
        listener: EventListener | None = None,
    ) -> None:
        self.settings = settings
        self._page = page
        self._owned_fetcher: ArtifactFetcher | None = None
        if fetcher is None:
            self._owned_fetcher = ArtifactFetcher(
                settings.download_dir, timeout_seconds=settings.timeout_seconds
            )
            fetcher = self._owned_fetcher

        self.hub = MessageHub(request_timeout=settings.request_timeout_seconds)

        self._workflow_bus = workflow_bus = EventBus(
            self.hub, source=WORKFLOW_CONTEXT, target_origin=settings.target_origin
        )
        waiter = WaitPrimitive(change_source, poll_interval=settings.poll_interval_seconds)
        steps = StepExecutor(
            page,
            waiter=waiter,
            log=workflow_bus.log,
            locators=locators or settings.load_locators(),
            timings=timings,
        )
        self.controller = AutomationController(
            steps,
            workflow_bus,
            retry_backoff_seconds=settings.retry_backoff_seconds,
            pause_check_interval=settings.pause_check_interval_seconds,
        )

        downloads_bus = EventBus(
            self.hub, source=DOWNLOADS_CONTEXT, target_origin=settings.target_origin
        )
        self.downloads = DownloadQueue(fetcher, downloads_bus)

        self.workflow_context = ExecutionContext(
            WORKFLOW_CONTEXT,
            origin=origin if origin is not None else str(getattr(page, "url", "")),
            on_request=self._handle_workflow,
        )
        self.downloads_context = ExecutionContext(
            DOWNLOADS_CONTEXT, on_request=self._handle_downloads
        )
        self.control = ControlSurface(self.hub, listener=listener)

    async def __aenter__(self) -> FlowStoryRuntime:
        self.start()
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.close()

    def start(self) -> None:
        for context in (self.workflow_context, self.downloads_context):
            context.start()
            self.hub.register(context)
        self.control.attach()
        logger.info("Runtime started", extra={"origin": self.workflow_context.origin})

    async def close(self) -> None:
        await self.control.detach()
        for context in (self.workflow_context, self.downloads_context):
            self.hub.unregister(context.name)
            await context.close()
        if self._owned_fetcher is not None:
            self._owned_fetcher.close()
        logger.info("Runtime closed")

    async def _handle_workflow(self, message: Request) -> Response:
        controller = self.controller
        if isinstance(message, StartRun):
            asset = (
                ReferenceAsset(data=message.reference_asset, mime_type=message.mime_type)
                if message.reference_asset
                else None
            )
            return controller.start(message.prompts, asset, message.settings)
        if isinstance(message, PauseRun):
            return controller.pause()
        if isinstance(message, ResumeRun):
            return controller.resume()
        if isinstance(message, StopRun):
            return controller.stop()
        if isinstance(message, GetArtifacts):
            return ArtifactList(artifacts=await controller.artifacts())
        if isinstance(message, ScanPage):
            result = await scan_page(self._page)
            summary, *details = describe_scan(result)
            self._workflow_bus.log(summary, Severity.INFO)
            for line in details:
                self._workflow_bus.log(line, Severity.DEBUG)
            return result
        if isinstance(message, Ping):
            return Pong()
        raise ValueError(f"Workflow context cannot handle {type(message).__name__}")

    async def _handle_downloads(self, message: Request) -> Response:
        queue = self.downloads
        if isinstance(message, EnqueueDownloads):
            return queue.enqueue_and_run(message.artifacts, message.prefix, message.delay_seconds)
        if isinstance(message, DownloadSingle):
            ok = await queue.download_single(message.locator, message.filename)
            return Accepted(accepted=ok, total=1, reason=None if ok else "Download failed")
        if isinstance(message, GetDownloadStatus):
            return queue.status()
        raise ValueError(f"Downloads context cannot handle {type(message).__name__}")
