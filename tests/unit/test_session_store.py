from __future__ import annotations

import json
from pathlib import Path

from flow_story_generator.automation.session.store import (
    DEFAULT_SESSION_ID,
    SessionSnapshot,
    SessionStore,
)
from flow_story_generator.automation.workflow.models import RunSettings


def test_missing_file_loads_nothing(tmp_path: Path) -> None:
    assert SessionStore(tmp_path / "nope.json").load() is None


def test_store_roundtrip(tmp_path: Path) -> None:
    store = SessionStore(tmp_path / "state" / "session.json")
    snapshot = SessionSnapshot(
        reference_asset="data:image/png;base64,iVBORw0KGgo=",
        prompts="one\ntwo",
        settings=RunSettings(timeout_seconds=30, delay_seconds=1, max_retries=5),
        filename_prefix="trip",
    )

    store.save(snapshot)

    assert store.load() == snapshot
    raw = json.loads(store.path.read_text(encoding="utf-8"))
    assert list(raw) == [DEFAULT_SESSION_ID]


def test_save_overwrites_the_snapshot_wholesale(tmp_path: Path) -> None:
    store = SessionStore(tmp_path / "session.json")
    store.save(SessionSnapshot(reference_asset="data:image/png;base64,AA==", prompts="a"))

    store.save(SessionSnapshot(prompts="b"))

    loaded = store.load()
    assert loaded is not None
    assert loaded.prompts == "b"
    assert loaded.reference_asset is None


def test_sessions_are_keyed_by_id(tmp_path: Path) -> None:
    store = SessionStore(tmp_path / "session.json")
    store.save(SessionSnapshot(prompts="default"))
    store.save(SessionSnapshot(prompts="other"), session_id="other")

    assert store.load().prompts == "default"  # type: ignore[union-attr]
    assert store.load("other").prompts == "other"  # type: ignore[union-attr]


def test_unreadable_files_are_ignored(tmp_path: Path) -> None:
    path = tmp_path / "session.json"
    path.write_text("{not json", encoding="utf-8")
    assert SessionStore(path).load() is None

    path.write_text(json.dumps({DEFAULT_SESSION_ID: {"settings": {"max_retries": 0}}}), encoding="utf-8")
    assert SessionStore(path).load() is None
