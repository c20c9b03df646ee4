"""FastAPI server adapter for flow-story-generator.

Exposes the operator control surface over HTTP.

Design intent:
- Keep automation logic in `flow_story_generator.automation.*`
- Keep server-specific concerns (routing, CORS, browser lifetime) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from flow_story_generator.server.app import create_app
