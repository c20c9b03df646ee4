"""Serial download queue.

One queue, one active run: a request arriving while a run is in progress is
rejected rather than merged. Items are processed in enqueue order with a
fixed delay between them; a failed item is logged and skipped.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path
from typing import Protocol

from flow_story_generator.automation.messaging.bus import EventBus
from flow_story_generator.automation.messaging.events import (
    DownloadCompleteEvent,
    DownloadProgressEvent,
    Severity,
)
from flow_story_generator.automation.messaging.messages import Accepted, DownloadStatus
from flow_story_generator.automation.workflow.models import (
    Artifact,
    DownloadTask,
    check_download_name,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class Fetcher(Protocol):
    async def download(self, locator: str, filename: str) -> Path: ...


def download_filename(prefix: str, index: int, total: int) -> str:
    """`story_001.png` for index 0; padding widens only past 999 items."""

    width = max(3, len(str(total)))
    return f"{prefix}_{index + 1:0{width}d}.png"


def build_download_tasks(artifacts: Sequence[Artifact], prefix: str) -> list[DownloadTask]:
    total = len(artifacts)
    return [
        DownloadTask(artifact=artifact, filename=download_filename(prefix, i, total))
        for i, artifact in enumerate(artifacts)
    ]


class DownloadQueue:
    def __init__(self, fetcher: Fetcher, bus: EventBus, *, sleep: Sleep = asyncio.sleep) -> None:
        self._fetcher = fetcher
        self._bus = bus
        self._sleep = sleep

        self._queue: list[DownloadTask] = []
        self._completed = 0
        self._active = False
        self._task: asyncio.Task[None] | None = None

    @property
    def is_active(self) -> bool:
        return self._active

    def status(self) -> DownloadStatus:
        return DownloadStatus(
            is_downloading=self._active, completed=self._completed, total=len(self._queue)
        )

    def enqueue_and_run(
        self, artifacts: Sequence[Artifact], prefix: str = "story", delay_seconds: float = 0.5
    ) -> Accepted:
        if self._active:
            return Accepted(
                accepted=False, total=len(self._queue), reason="A download run is already active"
            )
        if not artifacts:
            return Accepted(accepted=False, total=0, reason="No images provided")
        try:
            check_download_name(prefix)
        except ValueError as e:
            return Accepted(accepted=False, total=0, reason=str(e))

        self._queue = build_download_tasks(artifacts, prefix or "story")
        self._completed = 0
        self._active = True
        self._task = asyncio.create_task(self._drain(delay_seconds), name="download-queue")
        return Accepted(accepted=True, total=len(self._queue))

    async def download_single(self, locator: str, filename: str) -> bool:
        try:
            await self._fetcher.download(locator, filename)
        except Exception as e:
            logger.warning("Single download failed", extra={"file_name": filename, "error": str(e)})
            return False
        return True

    async def wait_drained(self) -> None:
        if self._task is not None:
            await self._task

    async def _drain(self, delay_seconds: float) -> None:
        tasks = list(self._queue)
        total = len(tasks)
        self._bus.log(f"Starting download of {total} images", Severity.INFO)
        try:
            for i, task in enumerate(tasks):
                try:
                    await self._fetcher.download(task.artifact.locator, task.filename)
                except Exception as e:
                    logger.warning(
                        "Download failed", extra={"file_name": task.filename, "error": str(e)}
                    )
                    self._bus.log(f"Failed to download {task.filename}: {e}", Severity.ERROR)
                else:
                    self._completed += 1
                    self._bus.publish(
                        DownloadProgressEvent(
                            current=self._completed, total=total, filename=task.filename
                        )
                    )

                if i < total - 1:
                    await self._sleep(delay_seconds)

            completed = self._completed
            self._bus.publish(DownloadCompleteEvent(total=completed))
            self._bus.log(
                f"Download complete! {completed} images saved.",
                Severity.SUCCESS if completed == total else Severity.WARNING,
            )
        finally:
            self._queue = []
            self._completed = 0
            self._active = False
