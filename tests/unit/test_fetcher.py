from __future__ import annotations

import base64
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

from flow_story_generator.automation.downloads.fetcher import (
    ArtifactFetcher,
    DownloadError,
    decode_data_url,
    unique_path,
)


def test_unique_path_uniquifies_like_a_browser(tmp_path: Path) -> None:
    assert unique_path(tmp_path, "story_001.png") == tmp_path / "story_001.png"

    (tmp_path / "story_001.png").write_bytes(b"a")
    assert unique_path(tmp_path, "story_001.png") == tmp_path / "story_001 (1).png"

    (tmp_path / "story_001 (1).png").write_bytes(b"b")
    assert unique_path(tmp_path, "story_001.png") == tmp_path / "story_001 (2).png"


def test_decode_data_url_variants() -> None:
    encoded = base64.b64encode(b"\x89PNG").decode()
    assert decode_data_url(f"data:image/png;base64,{encoded}") == b"\x89PNG"
    assert decode_data_url("data:text/plain,hello%20world") == b"hello world"

    with pytest.raises(DownloadError):
        decode_data_url("data:image/png;base64")
    with pytest.raises(DownloadError):
        decode_data_url("data:image/png;base64,@@@")


@pytest.mark.asyncio
async def test_download_of_a_data_url_writes_the_file(tmp_path: Path) -> None:
    fetcher = ArtifactFetcher(tmp_path / "out")
    encoded = base64.b64encode(b"image-bytes").decode()

    first = await fetcher.download(f"data:image/png;base64,{encoded}", "story_001.png")
    second = await fetcher.download(f"data:image/png;base64,{encoded}", "story_001.png")

    assert first.read_bytes() == b"image-bytes"
    assert second.name == "story_001 (1).png"
    fetcher.close()


def test_http_locators_are_fetched_with_the_session(tmp_path: Path) -> None:
    response = MagicMock()
    response.content = b"remote"
    session = MagicMock(spec=requests.Session)
    session.get.return_value = response

    fetcher = ArtifactFetcher(tmp_path, timeout_seconds=5, session=session)
    path = fetcher.download_blocking("https://example.test/a.png", "story_001.png")

    session.get.assert_called_once_with("https://example.test/a.png", timeout=5)
    assert path.read_bytes() == b"remote"


def test_http_errors_become_download_errors(tmp_path: Path) -> None:
    session = MagicMock(spec=requests.Session)
    session.get.side_effect = requests.ConnectionError("refused")

    fetcher = ArtifactFetcher(tmp_path, session=session)
    with pytest.raises(DownloadError):
        fetcher.download_blocking("https://example.test/a.png", "a.png")
    assert list(tmp_path.iterdir()) == []


def test_empty_payload_is_rejected(tmp_path: Path) -> None:
    response = MagicMock()
    response.content = b""
    session = MagicMock(spec=requests.Session)
    session.get.return_value = response

    fetcher = ArtifactFetcher(tmp_path, session=session)
    with pytest.raises(DownloadError):
        fetcher.download_blocking("https://example.test/a.png", "a.png")


@pytest.mark.parametrize(
    "filename", ["../escaped.png", "/tmp/absolute.png", "nested/story_001.png", "..\\up.png", "..", ""]
)
def test_names_outside_the_download_dir_are_refused(tmp_path: Path, filename: str) -> None:
    fetcher = ArtifactFetcher(tmp_path / "downloads")

    with pytest.raises(DownloadError):
        fetcher.save(filename, b"image-bytes")

    assert not (tmp_path / "escaped.png").exists()
    assert not (tmp_path / "downloads").exists() or not any((tmp_path / "downloads").iterdir())
