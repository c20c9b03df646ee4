"""Persisted operator session.

The file is a JSON object of session id -> snapshot. Saving replaces the whole
snapshot for that id; there is no versioning or migration.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from flow_story_generator.automation.workflow.models import DownloadName, RunSettings

logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = "flowStoryState"


class SessionSnapshot(BaseModel):
    reference_asset: str | None = Field(
        default=None, description="Reference image as a base64 data: URL"
    )
    prompts: str = Field(default="", description="Raw prompt text, one prompt per line")
    settings: RunSettings = Field(default_factory=RunSettings)
    filename_prefix: DownloadName = "story"


@dataclass
class SessionStore:
    path: Path

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def _load_unlocked(self) -> dict[str, object]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Session file is not valid JSON; ignoring", extra={"path": str(self.path)})
            return {}
        return raw if isinstance(raw, dict) else {}

    def load(self, session_id: str = DEFAULT_SESSION_ID) -> SessionSnapshot | None:
        with self._lock:
            entry = self._load_unlocked().get(session_id)
        if not isinstance(entry, dict):
            return None
        try:
            return SessionSnapshot.model_validate(entry)
        except ValidationError:
            logger.warning("Discarding unreadable session", extra={"session_id": session_id})
            return None

    def save(self, snapshot: SessionSnapshot, session_id: str = DEFAULT_SESSION_ID) -> None:
        with self._lock:
            data = self._load_unlocked()
            data[session_id] = snapshot.model_dump(mode="json")
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
            )
