"""Test configuration and fixtures."""

from pathlib import Path

import pytest

from flow_story_generator.automation.config import FlowStorySettings
from flow_story_generator.automation.workflow.models import ReferenceAsset

_ENV_VARS = (
    "LOG_LEVEL",
    "FLOW_STORY_CDP_URL",
    "FLOW_STORY_URL",
    "FLOW_STORY_TARGET_ORIGIN",
    "FLOW_STORY_DOWNLOAD_DIR",
    "FLOW_STORY_SESSION_FILE",
    "FLOW_STORY_LOCATORS_FILE",
    "FLOW_STORY_TIMEOUT_SECONDS",
    "FLOW_STORY_DELAY_SECONDS",
    "FLOW_STORY_MAX_RETRIES",
    "FLOW_STORY_DOWNLOAD_DELAY_SECONDS",
    "FLOW_STORY_POLL_INTERVAL_SECONDS",
    "FLOW_STORY_PAUSE_CHECK_INTERVAL_SECONDS",
    "FLOW_STORY_RETRY_BACKOFF_SECONDS",
    "FLOW_STORY_REQUEST_TIMEOUT_SECONDS",
    "FLOW_STORY_HOST",
    "FLOW_STORY_PORT",
    "FLOW_STORY_CORS_ORIGINS",
)

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> pytest.MonkeyPatch:
    """No FLOW_STORY_* variables leak in from the developer's shell or `.env`."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


@pytest.fixture
def fast_env(clean_env: pytest.MonkeyPatch, tmp_path: Path) -> pytest.MonkeyPatch:
    """Engine tuned for tests: tiny delays, state under tmp_path."""
    clean_env.setenv("FLOW_STORY_DOWNLOAD_DIR", str(tmp_path / "downloads"))
    clean_env.setenv("FLOW_STORY_SESSION_FILE", str(tmp_path / "state" / "session.json"))
    clean_env.setenv("FLOW_STORY_POLL_INTERVAL_SECONDS", "0.01")
    clean_env.setenv("FLOW_STORY_PAUSE_CHECK_INTERVAL_SECONDS", "0.01")
    clean_env.setenv("FLOW_STORY_RETRY_BACKOFF_SECONDS", "0")
    clean_env.setenv("FLOW_STORY_DELAY_SECONDS", "0")
    clean_env.setenv("FLOW_STORY_DOWNLOAD_DELAY_SECONDS", "0")
    clean_env.setenv("FLOW_STORY_TIMEOUT_SECONDS", "1")
    clean_env.setenv("FLOW_STORY_REQUEST_TIMEOUT_SECONDS", "2")
    return clean_env


@pytest.fixture
def settings(fast_env: pytest.MonkeyPatch) -> FlowStorySettings:
    """Provide test settings."""
    return FlowStorySettings(_env_file=None)


@pytest.fixture
def asset() -> ReferenceAsset:
    """Provide a tiny reference image."""
    return ReferenceAsset(data=PNG_BYTES, mime_type="image/png", filename="hero.png")
