"""Unit tests for configuration."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from flow_story_generator.automation.config import FlowStorySettings
from flow_story_generator.server.config import ServerSettings


def test_settings_defaults(clean_env: pytest.MonkeyPatch) -> None:
    settings = FlowStorySettings(_env_file=None)

    assert settings.log_level == "INFO"
    assert settings.cdp_url == "http://127.0.0.1:9222"
    assert settings.flow_url == "https://labs.google/fx/tools/flow"
    assert settings.target_origin == "https://labs.google/fx/*"
    assert settings.session_file == Path("flow_state/session.json")
    assert settings.locators_file is None
    assert settings.poll_interval_seconds == 0.2
    assert settings.pause_check_interval_seconds == 0.5
    assert settings.retry_backoff_seconds == 2.0
    assert settings.request_timeout_seconds == 10.0

    run = settings.run_settings()
    assert (run.timeout_seconds, run.delay_seconds, run.max_retries) == (60.0, 2.0, 3)
    assert run.download_delay_seconds == 0.5


def test_settings_loads_from_dotenv(tmp_path: Path, clean_env: pytest.MonkeyPatch) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text(
        "\n".join(
            [
                "LOG_LEVEL=DEBUG",
                "FLOW_STORY_CDP_URL=",
                "FLOW_STORY_MAX_RETRIES=5",
                "FLOW_STORY_DOWNLOAD_DIR=out",
            ]
        )
        + "\n",
        encoding="utf-8",
    )

    settings = FlowStorySettings(_env_file=env_file)

    assert settings.log_level == "DEBUG"
    assert settings.cdp_url == ""
    assert settings.max_retries == 5
    assert settings.download_dir == Path("out")


def test_invalid_run_defaults_are_rejected(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("FLOW_STORY_MAX_RETRIES", "0")
    with pytest.raises(ValidationError):
        FlowStorySettings(_env_file=None)


def test_locators_can_be_overridden_from_json(
    tmp_path: Path, clean_env: pytest.MonkeyPatch
) -> None:
    path = tmp_path / "locators.json"
    path.write_text(
        json.dumps({"create_button": ['button[aria-label="Generate"]'], "carry_forward_max_depth": 4}),
        encoding="utf-8",
    )
    clean_env.setenv("FLOW_STORY_LOCATORS_FILE", str(path))

    locators = FlowStorySettings(_env_file=None).load_locators()

    assert locators.create_button == ['button[aria-label="Generate"]']
    assert locators.carry_forward_max_depth == 4
    # Untouched strategies keep their defaults.
    assert locators.generated_artifact == 'img[alt*="Flow Image"]'


def test_server_settings_extend_engine_settings(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("FLOW_STORY_PORT", "9000")
    clean_env.setenv("FLOW_STORY_CORS_ORIGINS", "http://a.test, ,http://b.test")

    settings = ServerSettings(_env_file=None)

    assert settings.port == 9000
    assert settings.host == "127.0.0.1"
    assert settings.parsed_cors_origins() == ["http://a.test", "http://b.test"]
    assert settings.target_origin == "https://labs.google/fx/*"
