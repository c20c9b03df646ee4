"""Fetch an artifact and persist it to the download directory."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from pathlib import Path
from urllib.parse import unquote_to_bytes

import requests

from flow_story_generator.automation.workflow.models import check_download_name

logger = logging.getLogger(__name__)


class DownloadError(RuntimeError):
    pass


def unique_path(directory: Path, filename: str) -> Path:
    """Browser-style conflict handling: `name.png`, then `name (1).png`, ..."""

    candidate = directory / filename
    if not candidate.exists():
        return candidate
    stem, suffix = candidate.stem, candidate.suffix
    n = 1
    while True:
        candidate = directory / f"{stem} ({n}){suffix}"
        if not candidate.exists():
            return candidate
        n += 1


def decode_data_url(locator: str) -> bytes:
    header, sep, payload = locator.partition(",")
    if not sep:
        raise DownloadError("Malformed data: URL")
    if ";base64" in header:
        try:
            return base64.b64decode(payload, validate=True)
        except binascii.Error as e:
            raise DownloadError(f"Invalid base64 payload: {e}") from e
    return unquote_to_bytes(payload)


class ArtifactFetcher:
    """Blocking fetch + write, offloaded to a worker thread by `download`.

    Artifact URLs are usually signed and short-lived, so they are fetched as-is
    without retries; a failure is reported to the caller.
    """

    def __init__(
        self,
        download_dir: Path,
        *,
        timeout_seconds: float = 60.0,
        session: requests.Session | None = None,
    ) -> None:
        self.download_dir = download_dir
        self._timeout = timeout_seconds
        self._session = session or requests.Session()

    def close(self) -> None:
        self._session.close()

    def fetch(self, locator: str) -> bytes:
        if locator.startswith("data:"):
            return decode_data_url(locator)
        try:
            response = self._session.get(locator, timeout=self._timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise DownloadError(f"Fetching {locator[:80]} failed: {e}") from e
        return response.content

    def save(self, filename: str, data: bytes) -> Path:
        if not filename:
            raise DownloadError("Download needs a file name")
        try:
            check_download_name(filename)
        except ValueError as e:
            raise DownloadError(str(e)) from e
        directory = self.download_dir.resolve()
        directory.mkdir(parents=True, exist_ok=True)
        path = unique_path(directory, filename)
        if path.parent != directory:
            raise DownloadError(f"{filename!r} resolves outside {directory}")
        path.write_bytes(data)
        return path

    def download_blocking(self, locator: str, filename: str) -> Path:
        data = self.fetch(locator)
        if not data:
            raise DownloadError(f"Empty response for {filename}")
        path = self.save(filename, data)
        logger.info("Downloaded artifact", extra={"path": str(path), "bytes": len(data)})
        return path

    async def download(self, locator: str, filename: str) -> Path:
        return await asyncio.to_thread(self.download_blocking, locator, filename)
