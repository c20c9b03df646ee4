"""Run controller.

Owns the single `RunState` and its state machine:

    idle --start--> running --pause--> paused --resume--> running
    running|paused --stop--> stopped
    running --all items processed--> completed

Pause and stop are cooperative: they set flags that the run loop reads at its
checkpoints (before each item, and repeatedly while paused). An in-flight page
step always finishes before a stop takes effect.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from pydantic import BaseModel

from flow_story_generator.automation.messaging.bus import EventBus
from flow_story_generator.automation.messaging.events import (
    ErrorEvent,
    GenerationCompleteEvent,
    ProgressEvent,
    Severity,
)
from flow_story_generator.automation.messaging.messages import Accepted

from .models import (
    Artifact,
    ItemResult,
    ReferenceAsset,
    RunSettings,
    RunState,
    WorkItem,
    build_work_items,
)
from .retry import RetryOutcome, RetryPolicy, StepSequence
from .state_machine import ACTIVE_STATUSES, IllegalTransitionError, RunStatus, transition
from .steps import StepExecutor
from .waiting import settle

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass(slots=True)
class _RunSignals:
    pause: bool = False
    stop: bool = False
    superseded: bool = False


class RunSnapshot(BaseModel):
    status: RunStatus
    current_index: int
    total: int
    failed: int
    artifacts: int


class AutomationController:
    def __init__(
        self,
        steps: StepExecutor,
        bus: EventBus,
        *,
        retry_backoff_seconds: float = 2.0,
        pause_check_interval: float = 0.5,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if pause_check_interval <= 0:
            raise ValueError("pause_check_interval must be > 0")
        self._steps = steps
        self._bus = bus
        self._retry_backoff = retry_backoff_seconds
        self._pause_check_interval = pause_check_interval
        self._sleep = sleep

        self._state = RunState()
        self._signals: _RunSignals | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def status(self) -> RunStatus:
        return self._state.status

    def snapshot(self) -> RunSnapshot:
        s = self._state
        return RunSnapshot(
            status=s.status,
            current_index=s.current_index,
            total=s.total,
            failed=s.failed_count,
            artifacts=len(s.artifacts),
        )

    # -- operator signals -------------------------------------------------

    def start(
        self,
        prompts: list[str],
        reference_asset: ReferenceAsset | None,
        settings: RunSettings | None = None,
    ) -> Accepted:
        """Start a run; an active run is superseded and the new one starts from index 0."""

        items = build_work_items(prompts)
        if not items:
            return Accepted(accepted=False, total=0, reason="Please enter at least one prompt")
        if reference_asset is None or not reference_asset.data:
            return Accepted(
                accepted=False, total=len(items), reason="Please upload a character image first"
            )

        transition(current=self._state.status, to=RunStatus.RUNNING)

        previous = self._task
        if self._signals is not None:
            self._signals.superseded = True
            self._signals.stop = True
            self._signals.pause = False

        self._state = RunState(
            items=items,
            reference_asset=reference_asset,
            settings=settings or RunSettings(),
            status=RunStatus.RUNNING,
        )
        signals = _RunSignals()
        self._signals = signals
        self._task = asyncio.create_task(
            self._run(self._state, signals, previous), name="automation-run"
        )
        self._bus.log(f"Starting generation of {len(items)} images...", Severity.INFO)
        return Accepted(accepted=True, total=len(items))

    def pause(self) -> Accepted:
        if self._signals is None or self._state.status is not RunStatus.RUNNING:
            return Accepted(accepted=False, reason=f"Run is {self._state.status.value}")
        self._state.status = transition(current=self._state.status, to=RunStatus.PAUSED)
        self._signals.pause = True
        self._bus.log("Generation paused", Severity.WARNING)
        return Accepted(accepted=True)

    def resume(self) -> Accepted:
        if self._signals is None or self._state.status is not RunStatus.PAUSED:
            return Accepted(accepted=False, reason=f"Run is {self._state.status.value}")
        self._state.status = transition(current=self._state.status, to=RunStatus.RUNNING)
        self._signals.pause = False
        self._bus.log("Generation resumed", Severity.INFO)
        return Accepted(accepted=True)

    def stop(self) -> Accepted:
        if self._signals is None:
            return Accepted(accepted=False, reason="No run has been started")
        try:
            self._state.status = transition(current=self._state.status, to=RunStatus.STOPPED)
        except IllegalTransitionError as e:
            return Accepted(accepted=False, reason=str(e))
        self._signals.stop = True
        self._signals.pause = False
        self._bus.log("Generation stopped", Severity.WARNING)
        return Accepted(accepted=True)

    async def artifacts(self) -> list[Artifact]:
        """Re-query what the page currently shows, in prompt order."""

        return await self._steps.collect_artifacts()

    async def wait_finished(self) -> None:
        if self._task is not None:
            await self._task

    # -- run loop ---------------------------------------------------------

    async def _checkpoint(self, signals: _RunSignals) -> bool:
        """False when the run must end. Blocks here while paused."""

        if signals.stop:
            return False
        while signals.pause:
            await self._sleep(self._pause_check_interval)
            if signals.stop:
                return False
        return not signals.stop

    async def _run(
        self, state: RunState, signals: _RunSignals, previous: asyncio.Task[None] | None
    ) -> None:
        if previous is not None and not previous.done():
            # Let the superseded run reach its next checkpoint first.
            await asyncio.gather(previous, return_exceptions=True)

        try:
            await self._process_items(state, signals)
            if signals.superseded:
                return
            await self._checkpoint(signals)
        except Exception:
            logger.exception("Run loop failed", extra={"index": state.current_index})
            self._bus.publish(ErrorEvent(message="Automation loop crashed", fatal=True))
            signals.stop = True
            if state.status in ACTIVE_STATUSES:
                state.status = transition(current=state.status, to=RunStatus.STOPPED)
        if signals.superseded:
            return
        await self._finish(state, signals)

    async def _process_items(self, state: RunState, signals: _RunSignals) -> None:
        total = state.total
        retry = RetryPolicy(backoff_seconds=self._retry_backoff, log=self._bus.log, sleep=self._sleep)
        last_reported: int | None = None

        for i in range(state.current_index, total):
            if not await self._checkpoint(signals):
                break

            item = state.items[i]
            if last_reported != i:
                self._bus.publish(ProgressEvent(current=i, total=total, prompt=item.prompt))

            result = await retry.run_with_retries(
                self._item_sequence(state, item),
                state.settings.max_retries,
                should_stop=lambda: signals.stop,
            )
            if signals.superseded:
                return

            state.results.append(
                ItemResult(
                    index=i, prompt=item.prompt, succeeded=result.succeeded, attempts=result.attempts
                )
            )
            state.current_index = i + 1
            self._bus.publish(ProgressEvent(current=i + 1, total=total, prompt=item.prompt))
            last_reported = i + 1

            if result.outcome is RetryOutcome.EXHAUSTED:
                self._bus.publish(
                    ErrorEvent(message=f"Failed to generate image for prompt {i + 1}", fatal=False)
                )

            if i < total - 1:
                await self._sleep(state.settings.delay_seconds)

    def _item_sequence(self, state: RunState, item: WorkItem) -> StepSequence:
        steps = self._steps
        timings = steps.timings
        asset = state.reference_asset
        assert asset is not None
        max_attempts = state.settings.max_retries
        timeout = state.settings.timeout_seconds
        preview = item.prompt if len(item.prompt) <= 40 else f"{item.prompt[:40]}..."

        async def _attempt(attempt: int) -> bool:
            self._bus.log(
                f'Processing prompt (attempt {attempt}/{max_attempts}): "{preview}"', Severity.INFO
            )
            await steps.reset_input_field()
            await settle(timings.after_reset)

            await steps.attach_reference_asset(asset)
            await settle(timings.after_attach)

            if item.index > 0:
                await steps.chain_prior_result()
                await settle(timings.after_chain)

            await steps.submit_prompt(item.prompt)
            await settle(timings.after_submit)

            await steps.trigger_generation()
            return await steps.await_generation_result(timeout)

        return _attempt

    async def _finish(self, state: RunState, signals: _RunSignals) -> None:
        if signals.stop:
            self._bus.log("Automation stopped", Severity.WARNING)
        else:
            state.status = transition(current=state.status, to=RunStatus.COMPLETED)

        try:
            artifacts = await self._steps.collect_artifacts()
        except Exception as e:
            logger.exception("Collecting artifacts failed")
            self._bus.log(f"Could not read generated images: {e}", Severity.ERROR)
            artifacts = []
        state.artifacts = artifacts

        succeeded = sum(1 for r in state.results if r.succeeded)
        self._bus.log(
            f"Run {state.status.value}: {succeeded}/{state.total} prompts generated",
            Severity.SUCCESS if state.status is RunStatus.COMPLETED else Severity.WARNING,
        )
        self._bus.publish(GenerationCompleteEvent(total=len(artifacts), artifacts=artifacts))
