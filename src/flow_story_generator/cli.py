"""Module entrypoint kept so `python -m flow_story_generator.cli` works.

The CLI itself is implemented in `flow_story_generator.automation.main`.
"""

from __future__ import annotations

from flow_story_generator.automation.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
