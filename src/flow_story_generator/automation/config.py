"""Configuration for the Flow automation engine.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Per-run values (timeouts, delays, retries) given with a start request override
the defaults configured here.
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from flow_story_generator.automation.workflow.locators import Locators
from flow_story_generator.automation.workflow.models import RunSettings


class FlowStorySettings(BaseSettings):
    """Settings for the local automation engine.

    Environment variables:
    - LOG_LEVEL                 (optional)
    - FLOW_STORY_CDP_URL        (optional, empty launches a new browser)
    - FLOW_STORY_URL            (optional)
    - FLOW_STORY_TARGET_ORIGIN  (optional)
    - FLOW_STORY_DOWNLOAD_DIR   (optional)
    - FLOW_STORY_SESSION_FILE   (optional)
    - FLOW_STORY_LOCATORS_FILE  (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `FlowStorySettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    cdp_url: str = Field(
        default="http://127.0.0.1:9222",
        validation_alias="FLOW_STORY_CDP_URL",
        description=(
            "Chrome DevTools endpoint of an already running, logged-in browser. "
            "Leave empty to launch a fresh Chromium instance instead."
        ),
    )
    flow_url: str = Field(
        default="https://labs.google/fx/tools/flow",
        validation_alias="FLOW_STORY_URL",
        description="Page opened when no matching tab is found",
    )
    target_origin: str = Field(
        default="https://labs.google/fx/*",
        validation_alias="FLOW_STORY_TARGET_ORIGIN",
        description="fnmatch pattern selecting workflow tabs (discovery and event fan-out)",
    )

    download_dir: Path = Field(
        default=Path("downloads"),
        validation_alias="FLOW_STORY_DOWNLOAD_DIR",
        description="Directory where downloaded artifacts are written",
    )
    session_file: Path = Field(
        default=Path("flow_state/session.json"),
        validation_alias="FLOW_STORY_SESSION_FILE",
        description="Where the operator session snapshot is persisted",
    )
    locators_file: Path | None = Field(
        default=None,
        validation_alias="FLOW_STORY_LOCATORS_FILE",
        description="Optional JSON file overriding the page locator strategies",
    )

    timeout_seconds: float = Field(
        default=60.0, gt=0, validation_alias="FLOW_STORY_TIMEOUT_SECONDS"
    )
    delay_seconds: float = Field(default=2.0, ge=0, validation_alias="FLOW_STORY_DELAY_SECONDS")
    max_retries: int = Field(default=3, ge=1, le=20, validation_alias="FLOW_STORY_MAX_RETRIES")
    download_delay_seconds: float = Field(
        default=0.5, ge=0, validation_alias="FLOW_STORY_DOWNLOAD_DELAY_SECONDS"
    )

    poll_interval_seconds: float = Field(
        default=0.2,
        gt=0,
        validation_alias="FLOW_STORY_POLL_INTERVAL_SECONDS",
        description="Fallback polling interval used by every wait",
    )
    pause_check_interval_seconds: float = Field(
        default=0.5,
        gt=0,
        validation_alias="FLOW_STORY_PAUSE_CHECK_INTERVAL_SECONDS",
        description="How often a paused run re-checks for resume or stop",
    )
    retry_backoff_seconds: float = Field(
        default=2.0, ge=0, validation_alias="FLOW_STORY_RETRY_BACKOFF_SECONDS"
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        validation_alias="FLOW_STORY_REQUEST_TIMEOUT_SECONDS",
        description="Budget for one cross-context request/response round trip",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    def run_settings(self) -> RunSettings:
        """Default per-run settings."""

        return RunSettings(
            timeout_seconds=self.timeout_seconds,
            delay_seconds=self.delay_seconds,
            max_retries=self.max_retries,
            download_delay_seconds=self.download_delay_seconds,
        )

    def load_locators(self) -> Locators:
        if self.locators_file is None:
            return Locators()
        raw = json.loads(self.locators_file.read_text(encoding="utf-8"))
        return Locators.model_validate(raw)
