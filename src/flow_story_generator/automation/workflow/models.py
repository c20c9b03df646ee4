"""Data model for a generation run."""

from __future__ import annotations

import base64
import binascii
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import Annotated

from pydantic import AfterValidator, BaseModel, Field

from .state_machine import RunStatus

DEFAULT_ASSET_FILENAME = "character.png"


class RunSettings(BaseModel):
    """Per-run knobs supplied with a start request."""

    timeout_seconds: float = Field(default=60.0, gt=0)
    delay_seconds: float = Field(default=2.0, ge=0)
    max_retries: int = Field(default=3, ge=1, le=20)
    download_delay_seconds: float = Field(default=0.5, ge=0)


class Artifact(BaseModel):
    """A produced output as found on the page.

    `position` is the structural position recorded by the page (its `data-index`)
    and drives ordering; `index` is the DOM order it was found in.
    """

    locator: str
    prompt: str = ""
    position: int
    index: int = 0


@dataclass(frozen=True, slots=True)
class WorkItem:
    index: int
    prompt: str


@dataclass(frozen=True, slots=True)
class ReferenceAsset:
    """Already-decoded image bytes plus their mime type."""

    data: bytes
    mime_type: str = "image/png"
    filename: str = DEFAULT_ASSET_FILENAME

    @classmethod
    def from_data_url(cls, value: str, *, filename: str = DEFAULT_ASSET_FILENAME) -> ReferenceAsset:
        """Parse a base64 `data:` URL (the form browsers hand out for file uploads)."""

        header, sep, payload = value.partition(",")
        if not sep or not header.startswith("data:") or ";base64" not in header:
            raise ValueError("Reference asset must be a base64 data: URL")
        mime_type = header[len("data:") :].split(";", 1)[0] or "application/octet-stream"
        try:
            data = base64.b64decode(payload, validate=True)
        except binascii.Error as e:
            raise ValueError(f"Reference asset is not valid base64: {e}") from e
        if not data:
            raise ValueError("Reference asset is empty")
        return cls(data=data, mime_type=mime_type, filename=filename)

    @classmethod
    def from_path(cls, path: Path) -> ReferenceAsset:
        mime_type, _ = mimetypes.guess_type(path.name)
        return cls(
            data=path.read_bytes(),
            mime_type=mime_type or "image/png",
            filename=path.name,
        )

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


def check_download_name(value: str) -> str:
    """Reject names that would place a file outside the download directory."""

    if value in (".", "..") or any(c in value for c in ("/", "\\", "\x00")):
        raise ValueError(f"{value!r} must be a plain file name, without directories")
    return value


DownloadName = Annotated[str, AfterValidator(check_download_name)]


@dataclass(frozen=True, slots=True)
class DownloadTask:
    artifact: Artifact
    filename: str


@dataclass(frozen=True, slots=True)
class ItemResult:
    """Outcome of one processed work item."""

    index: int
    prompt: str
    succeeded: bool
    attempts: int


@dataclass
class RunState:
    """The single run owned by `AutomationController`.

    Invariants while a run is active:
      - `current_index` never decreases.
      - `len(results) == current_index` once a step completes.
    """

    items: tuple[WorkItem, ...] = ()
    reference_asset: ReferenceAsset | None = None
    settings: RunSettings = field(default_factory=RunSettings)
    status: RunStatus = RunStatus.IDLE
    current_index: int = 0
    results: list[ItemResult] = field(default_factory=list)
    artifacts: list[Artifact] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.succeeded)


def split_prompts(text: str) -> list[str]:
    """One prompt per non-blank line."""

    return [line.strip() for line in text.splitlines() if line.strip()]


def build_work_items(prompts: list[str]) -> tuple[WorkItem, ...]:
    cleaned = [p.strip() for p in prompts if p and p.strip()]
    return tuple(WorkItem(index=i, prompt=p) for i, p in enumerate(cleaned))


def order_artifacts(artifacts: list[Artifact]) -> list[Artifact]:
    """Prompt order: by recorded position, DOM order breaking ties."""

    return sorted(artifacts, key=lambda a: (a.position, a.index))
