"""CLI entrypoint for the Flow story generator.

Attaches to the Flow page in a browser, then drives it through the same
control surface the HTTP server uses.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path

import uvicorn
from pydantic import ValidationError

from flow_story_generator import __version__
from flow_story_generator.automation.browser.scan import describe_scan
from flow_story_generator.automation.browser.session import BrowserSession
from flow_story_generator.automation.config import FlowStorySettings
from flow_story_generator.automation.errors import FlowStoryError
from flow_story_generator.automation.logging import configure_logging
from flow_story_generator.automation.messaging.events import (
    DownloadProgressEvent,
    ErrorEvent,
    Event,
    LogEvent,
    ProgressEvent,
)
from flow_story_generator.automation.runtime import FlowStoryRuntime
from flow_story_generator.automation.session.store import SessionSnapshot, SessionStore
from flow_story_generator.automation.workflow.models import (
    ReferenceAsset,
    RunSettings,
    split_prompts,
)
from flow_story_generator.server.config import ServerSettings

logger = logging.getLogger(__name__)

# Per attempt, on top of the generation timeout: attach, chain and create waits.
_ATTEMPT_OVERHEAD_SECONDS = 15.0
_WAIT_SLACK_SECONDS = 30.0


def generation_budget(item_count: int, run: RunSettings, backoff_seconds: float) -> float:
    """Longest an unpaused run can take: every attempt of every item times out."""

    per_item = (
        run.max_retries * (run.timeout_seconds + _ATTEMPT_OVERHEAD_SECONDS)
        + (run.max_retries - 1) * backoff_seconds
        + run.delay_seconds
    )
    return item_count * per_item + _WAIT_SLACK_SECONDS


def download_budget(item_count: int, delay_seconds: float, fetch_timeout: float) -> float:
    return item_count * (fetch_timeout + delay_seconds) + _WAIT_SLACK_SECONDS


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flow-story",
        description="Generate a consistent-character image story in Google Flow",
    )
    parser.add_argument(
        "--version", action="version", version=f"flow-story-generator {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Generate one image per prompt")
    run.add_argument(
        "--prompts",
        type=Path,
        default=None,
        help="Text file with one prompt per line ('-' reads stdin). Defaults to the saved session.",
    )
    run.add_argument(
        "--image",
        type=Path,
        default=None,
        help="Character reference image. Defaults to the saved session.",
    )
    run.add_argument("--timeout", type=float, default=None, help="Seconds to wait per generation")
    run.add_argument("--delay", type=float, default=None, help="Seconds between prompts")
    run.add_argument("--retries", type=int, default=None, help="Attempts per prompt")
    run.add_argument(
        "--download",
        action="store_true",
        help="Download all images once the run completes",
    )
    run.add_argument("--prefix", default=None, help="Download filename prefix (default: story)")
    run.add_argument(
        "--download-delay", type=float, default=None, help="Seconds between downloads"
    )

    download = subparsers.add_parser(
        "download", help="Download every generated image currently on the page"
    )
    download.add_argument("--prefix", default="story", help="Filename prefix")
    download.add_argument(
        "--delay", type=float, default=None, help="Seconds between downloads"
    )

    subparsers.add_parser("scan-page", help="List the page elements the automation looks for")

    serve = subparsers.add_parser("serve", help="Serve the HTTP control surface")
    serve.add_argument("--host", default=None, help="Bind address (default from settings)")
    serve.add_argument("--port", type=int, default=None, help="Port (default from settings)")

    return parser


def _echo(event: Event) -> None:
    if isinstance(event, ProgressEvent):
        print(f"[{event.current}/{event.total}] {event.prompt}")
    elif isinstance(event, LogEvent):
        print(f"{event.severity.value:>7}  {event.message}")
    elif isinstance(event, ErrorEvent):
        print(f"  error  {event.message}", file=sys.stderr)
    elif isinstance(event, DownloadProgressEvent):
        print(f"  saved  {event.filename} ({event.current}/{event.total})")


def _read_prompts(path: Path | None, snapshot: SessionSnapshot) -> str:
    if path is None:
        return snapshot.prompts
    if str(path) == "-":
        return sys.stdin.read()
    return path.read_text(encoding="utf-8")


def _install_stop_handler(runtime: FlowStoryRuntime) -> None:
    loop = asyncio.get_running_loop()
    pending: set[asyncio.Task[object]] = set()

    def _request_stop() -> None:
        print("Stopping after the current step...", file=sys.stderr)
        task = loop.create_task(runtime.control.stop_run())
        pending.add(task)
        task.add_done_callback(pending.discard)

    # Not available on every platform (e.g. Windows event loops).
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, _request_stop)


async def _download_all(
    runtime: FlowStoryRuntime, prefix: str, delay_seconds: float
) -> int:
    accepted = await runtime.control.download_all(prefix=prefix, delay_seconds=delay_seconds)
    if not accepted.accepted:
        print(accepted.reason or "Nothing to download", file=sys.stderr)
        return 1
    budget = download_budget(accepted.total or 0, delay_seconds, runtime.settings.timeout_seconds)
    try:
        saved = await runtime.control.wait_for_downloads(timeout=budget)
    except TimeoutError:
        print(f"Downloads did not finish within {budget:.0f}s", file=sys.stderr)
        return 1
    print(f"Saved {saved}/{accepted.total} images to {runtime.settings.download_dir}")
    return 0 if saved == accepted.total else 1


async def _run(args: argparse.Namespace, settings: FlowStorySettings) -> int:
    store = SessionStore(settings.session_file)
    snapshot = store.load() or SessionSnapshot(settings=settings.run_settings())

    prompt_text = _read_prompts(args.prompts, snapshot)
    prompts = split_prompts(prompt_text)
    if args.image is not None:
        asset: ReferenceAsset | None = ReferenceAsset.from_path(args.image)
    elif snapshot.reference_asset:
        asset = ReferenceAsset.from_data_url(snapshot.reference_asset)
    else:
        asset = None

    overrides = {
        "timeout_seconds": args.timeout,
        "delay_seconds": args.delay,
        "max_retries": args.retries,
        "download_delay_seconds": args.download_delay,
    }
    run_settings = RunSettings.model_validate(
        snapshot.settings.model_dump() | {k: v for k, v in overrides.items() if v is not None}
    )
    prefix = args.prefix or snapshot.filename_prefix

    store.save(
        SessionSnapshot(
            reference_asset=asset.to_data_url() if asset is not None else None,
            prompts=prompt_text,
            settings=run_settings,
            filename_prefix=prefix,
        )
    )

    async with BrowserSession(settings) as browser, FlowStoryRuntime(
        browser.page, settings, change_source=browser.change_source, listener=_echo
    ) as runtime:
        accepted = await runtime.control.start_run(prompts, asset, run_settings)
        if accepted is None or not accepted.accepted:
            reason = accepted.reason if accepted is not None else "workflow page did not answer"
            print(f"Run not started: {reason}", file=sys.stderr)
            return 3

        _install_stop_handler(runtime)
        budget = generation_budget(len(prompts), run_settings, settings.retry_backoff_seconds)
        try:
            result = await runtime.control.wait_for_generation(timeout=budget)
        except TimeoutError:
            await runtime.control.stop_run()
            print(f"No completion reported within {budget:.0f}s; run stopped", file=sys.stderr)
            return 1
        snapshot_after = runtime.controller.snapshot()
        print(
            f"Run {snapshot_after.status.value}: {result.total} images on page, "
            f"{snapshot_after.failed} prompts failed"
        )

        if args.download:
            return await _download_all(runtime, prefix, run_settings.download_delay_seconds)
        return 0 if snapshot_after.failed == 0 else 1


async def _download(args: argparse.Namespace, settings: FlowStorySettings) -> int:
    delay = args.delay if args.delay is not None else settings.download_delay_seconds
    async with BrowserSession(settings) as browser, FlowStoryRuntime(
        browser.page, settings, change_source=browser.change_source, listener=_echo
    ) as runtime:
        return await _download_all(runtime, args.prefix, delay)


async def _scan_page(settings: FlowStorySettings) -> int:
    async with BrowserSession(settings) as browser, FlowStoryRuntime(
        browser.page, settings, change_source=browser.change_source
    ) as runtime:
        result = await runtime.control.scan_page()
        if result is None:
            print("Failed to scan page - make sure you are on Google Flow", file=sys.stderr)
            return 1
        for line in describe_scan(result):
            print(line)
        for image in result.images:
            print(f'Image: alt="{image.alt or ""}"')
        return 0


def _serve(args: argparse.Namespace) -> int:
    server_settings = ServerSettings()
    uvicorn.run(
        "flow_story_generator.server.app:create_app",
        factory=True,
        host=args.host or server_settings.host,
        port=args.port or server_settings.port,
        log_config=None,
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = FlowStorySettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    try:
        if args.command == "run":
            return asyncio.run(_run(args, settings))

        if args.command == "download":
            return asyncio.run(_download(args, settings))

        if args.command == "scan-page":
            return asyncio.run(_scan_page(settings))

        if args.command == "serve":
            return _serve(args)

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except ValidationError as e:
        print("Invalid run settings:", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    except FlowStoryError as e:
        logger.error(str(e))
        print(str(e), file=sys.stderr)
        return 3

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
