#!/usr/bin/env python3
"""Programmatic story run example.

This drives the automation components directly instead of going through the
`flow-story` CLI:

* load settings from `.env`
* attach to (or launch) a browser showing Flow
* generate one image per prompt, chaining each result into the next
* download every image as `<prefix>_001.png`, `<prefix>_002.png`, ...

The reference image and prompts are passed as arguments (not read from the
saved session).
"""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import Sequence

from flow_story_generator.automation.browser.session import BrowserSession
from flow_story_generator.automation.config import FlowStorySettings
from flow_story_generator.automation.logging import configure_logging
from flow_story_generator.automation.main import download_budget, generation_budget
from flow_story_generator.automation.runtime import FlowStoryRuntime
from flow_story_generator.automation.workflow.models import ReferenceAsset


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate and download a short story (programmatic example).")
    parser.add_argument("--image", required=True, type=Path, help="Character reference image")
    parser.add_argument("--prefix", default="example", help="Download filename prefix")
    parser.add_argument("prompts", nargs="+", help="One prompt per scene, in story order")
    return parser.parse_args(argv)


async def _story(args: argparse.Namespace, settings: FlowStorySettings) -> int:
    asset = ReferenceAsset.from_path(args.image)

    async with BrowserSession(settings) as browser, FlowStoryRuntime(
        browser.page, settings, change_source=browser.change_source
    ) as runtime:
        run_settings = settings.run_settings()
        accepted = await runtime.control.start_run(args.prompts, asset, run_settings)
        if accepted is None or not accepted.accepted:
            print("Run was not started; see the log for details.")
            return 1

        result = await runtime.control.wait_for_generation(
            timeout=generation_budget(len(args.prompts), run_settings, settings.retry_backoff_seconds)
        )
        print(f"Generated {result.total} images")

        queued = await runtime.control.download_all(args.prefix, settings.download_delay_seconds)
        if not queued.accepted:
            return 1
        saved = await runtime.control.wait_for_downloads(
            timeout=download_budget(queued.total or 0, settings.download_delay_seconds, settings.timeout_seconds)
        )

    print(f"Saved {saved} images to: {settings.download_dir}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = FlowStorySettings()
    configure_logging(settings.log_level)

    return asyncio.run(_story(args, settings))


if __name__ == "__main__":
    raise SystemExit(main())
