"""Configuration for the REST server.

The server attaches to the browser when it starts, so it shares every setting
of the automation engine and only adds the HTTP-facing ones.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from flow_story_generator.automation.config import FlowStorySettings


class ServerSettings(FlowStorySettings):
    """Settings for the HTTP control surface."""

    host: str = Field(default="127.0.0.1", validation_alias="FLOW_STORY_HOST")
    port: int = Field(default=8765, ge=1, le=65535, validation_alias="FLOW_STORY_PORT")

    # Dev-friendly CORS. Override via FLOW_STORY_CORS_ORIGINS=...
    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        validation_alias="FLOW_STORY_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
