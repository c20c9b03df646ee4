"""Fixtures built on the in-memory Flow page."""

from __future__ import annotations

import pytest
from dom_fakes import FlowPageSimulator, RecordingBus

from flow_story_generator.automation.browser.session import DomChangeSource
from flow_story_generator.automation.workflow.steps import StepExecutor, StepTimings
from flow_story_generator.automation.workflow.waiting import WaitPrimitive


@pytest.fixture
def change_source() -> DomChangeSource:
    return DomChangeSource()


@pytest.fixture
def flow_page(change_source: DomChangeSource) -> FlowPageSimulator:
    return FlowPageSimulator(notify=change_source.notify)


@pytest.fixture
def waiter(change_source: DomChangeSource) -> WaitPrimitive:
    return WaitPrimitive(change_source, poll_interval=0.01)


@pytest.fixture
def bus() -> RecordingBus:
    return RecordingBus()


@pytest.fixture
def steps(flow_page: FlowPageSimulator, waiter: WaitPrimitive, bus: RecordingBus) -> StepExecutor:
    return StepExecutor(
        flow_page.page,
        waiter=waiter,
        log=bus.log,
        locators=flow_page.locators,
        timings=StepTimings.immediate(),
    )
