from __future__ import annotations

import asyncio
import base64
from pathlib import Path

import pytest
from dom_fakes import RecordingBus

from flow_story_generator.automation.downloads.fetcher import ArtifactFetcher, DownloadError
from flow_story_generator.automation.downloads.queue import (
    DownloadQueue,
    build_download_tasks,
    download_filename,
)
from flow_story_generator.automation.messaging.events import (
    DownloadCompleteEvent,
    DownloadProgressEvent,
)
from flow_story_generator.automation.workflow.models import Artifact


class FakeFetcher:
    def __init__(self, *, failing: set[str] | None = None, gate: asyncio.Event | None = None):
        self.calls: list[tuple[str, str]] = []
        self.failing = failing or set()
        self.gate = gate

    async def download(self, locator: str, filename: str) -> Path:
        if self.gate is not None:
            await self.gate.wait()
        self.calls.append((locator, filename))
        if locator in self.failing:
            raise DownloadError(f"HTTP 403 for {locator}")
        return Path(filename)


def _artifacts(n: int) -> list[Artifact]:
    return [Artifact(locator=f"https://example.test/{i}.png", position=i, index=i) for i in range(n)]


class _Sleeps:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def test_filenames_are_zero_padded_to_three_digits() -> None:
    assert download_filename("story", 0, 12) == "story_001.png"
    assert download_filename("story", 11, 12) == "story_012.png"
    assert download_filename("hero", 998, 999) == "hero_999.png"


def test_padding_widens_past_999_items() -> None:
    assert download_filename("story", 0, 1000) == "story_0001.png"
    assert download_filename("story", 999, 1000) == "story_1000.png"


def test_tasks_keep_artifact_order() -> None:
    tasks = build_download_tasks(_artifacts(3), "trip")
    assert [t.filename for t in tasks] == ["trip_001.png", "trip_002.png", "trip_003.png"]
    assert [t.artifact.position for t in tasks] == [0, 1, 2]


@pytest.mark.asyncio
async def test_queue_downloads_everything_in_order() -> None:
    fetcher = FakeFetcher()
    bus = RecordingBus()
    sleeps = _Sleeps()
    queue = DownloadQueue(fetcher, bus, sleep=sleeps)  # type: ignore[arg-type]

    accepted = queue.enqueue_and_run(_artifacts(12), prefix="story", delay_seconds=0.5)
    await queue.wait_drained()

    assert accepted.accepted and accepted.total == 12
    assert [name for _, name in fetcher.calls] == [f"story_{i:03d}.png" for i in range(1, 13)]
    assert [e.current for e in bus.of_type(DownloadProgressEvent)] == list(range(1, 13))
    assert bus.of_type(DownloadCompleteEvent) == [DownloadCompleteEvent(total=12)]
    # Delay between items only.
    assert sleeps.calls == [0.5] * 11
    assert not queue.is_active


@pytest.mark.asyncio
async def test_failed_item_is_skipped_and_the_run_continues() -> None:
    fetcher = FakeFetcher(failing={"https://example.test/1.png"})
    bus = RecordingBus()
    queue = DownloadQueue(fetcher, bus, sleep=_Sleeps())  # type: ignore[arg-type]

    queue.enqueue_and_run(_artifacts(3))
    await queue.wait_drained()

    assert len(fetcher.calls) == 3
    assert [e.filename for e in bus.of_type(DownloadProgressEvent)] == [
        "story_001.png",
        "story_003.png",
    ]
    assert bus.of_type(DownloadCompleteEvent)[0].total == 2
    assert any(m.startswith("Failed to download story_002.png") for m in bus.messages())


@pytest.mark.asyncio
async def test_second_run_is_rejected_while_active() -> None:
    gate = asyncio.Event()
    fetcher = FakeFetcher(gate=gate)
    queue = DownloadQueue(fetcher, RecordingBus(), sleep=_Sleeps())  # type: ignore[arg-type]

    first = queue.enqueue_and_run(_artifacts(2))
    await asyncio.sleep(0)
    status = queue.status()
    second = queue.enqueue_and_run(_artifacts(5))

    assert first.accepted
    assert not second.accepted
    assert second.reason == "A download run is already active"
    assert status.is_downloading and status.total == 2 and status.completed == 0

    gate.set()
    await queue.wait_drained()
    assert len(fetcher.calls) == 2
    assert queue.status().is_downloading is False
    assert queue.enqueue_and_run(_artifacts(1)).accepted


@pytest.mark.asyncio
async def test_empty_enqueue_is_rejected() -> None:
    queue = DownloadQueue(FakeFetcher(), RecordingBus())  # type: ignore[arg-type]

    result = queue.enqueue_and_run([])

    assert not result.accepted
    assert not queue.is_active


@pytest.mark.asyncio
async def test_single_download_reports_failure_as_false() -> None:
    fetcher = FakeFetcher(failing={"bad"})
    queue = DownloadQueue(fetcher, RecordingBus())  # type: ignore[arg-type]

    assert await queue.download_single("good", "one.png") is True
    assert await queue.download_single("bad", "two.png") is False


PNG_DATA_URL = "data:image/png;base64," + base64.b64encode(b"\x89PNG").decode()


@pytest.mark.asyncio
async def test_prefix_with_directories_is_rejected(tmp_path: Path) -> None:
    fetcher = ArtifactFetcher(tmp_path / "downloads")
    queue = DownloadQueue(fetcher, RecordingBus())
    artifacts = [Artifact(locator=PNG_DATA_URL, position=0)]

    result = queue.enqueue_and_run(artifacts, prefix="../pwn", delay_seconds=0)

    assert not result.accepted
    assert not queue.is_active
    assert not (tmp_path / "pwn_001.png").exists()


@pytest.mark.asyncio
async def test_single_download_stays_inside_the_download_dir(tmp_path: Path) -> None:
    fetcher = ArtifactFetcher(tmp_path / "downloads")
    queue = DownloadQueue(fetcher, RecordingBus())

    assert await queue.download_single(PNG_DATA_URL, "../escaped.png") is False
    assert await queue.download_single(PNG_DATA_URL, "kept.png") is True

    assert not (tmp_path / "escaped.png").exists()
    assert (tmp_path / "downloads" / "kept.png").read_bytes() == b"\x89PNG"
    fetcher.close()
