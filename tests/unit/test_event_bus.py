from __future__ import annotations

import asyncio

import pytest

from flow_story_generator.automation.errors import CommunicationFailure
from flow_story_generator.automation.messaging.bus import EventBus, ExecutionContext, MessageHub
from flow_story_generator.automation.messaging.events import (
    LogEvent,
    ProgressEvent,
    Severity,
    event_adapter,
)
from flow_story_generator.automation.messaging.messages import (
    Accepted,
    Ping,
    Pong,
    StopRun,
    request_adapter,
)

FLOW_TABS = "https://labs.google/fx/*"


async def _pong(message: object) -> Pong:
    return Pong()


def _recorder() -> tuple[list[object], ExecutionContext]:
    received: list[object] = []

    async def on_event(event: object) -> None:
        received.append(event)

    return received, ExecutionContext("control", on_event=on_event)


async def _drain() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_request_round_trip() -> None:
    hub = MessageHub(request_timeout=1)
    workflow = ExecutionContext("workflow", on_request=_pong)
    workflow.start()
    hub.register(workflow)

    assert await hub.request("workflow", Ping()) == Pong()
    await workflow.close()


@pytest.mark.asyncio
async def test_request_failures_become_none() -> None:
    hub = MessageHub(request_timeout=0.05)

    async def broken(message: object) -> Accepted:
        raise RuntimeError("page crashed")

    async def slow(message: object) -> Accepted:
        await asyncio.sleep(1)
        return Accepted(accepted=True)

    failing = ExecutionContext("failing", on_request=broken)
    sleepy = ExecutionContext("sleepy", on_request=slow)
    closed = ExecutionContext("closed", on_request=_pong)
    for ctx in (failing, sleepy):
        ctx.start()
        hub.register(ctx)
    hub.register(closed)

    assert await hub.request("nobody", Ping()) is None
    assert await hub.request("failing", Ping()) is None
    assert await hub.request("sleepy", StopRun()) is None
    assert await hub.request("closed", Ping()) is None

    for ctx in (failing, sleepy):
        await ctx.close()


@pytest.mark.asyncio
async def test_context_without_request_handler_refuses_requests() -> None:
    hub = MessageHub(request_timeout=1)
    _, control = _recorder()
    control.start()
    hub.register(control)

    assert await hub.request("control", Ping()) is None
    await control.close()


@pytest.mark.asyncio
async def test_closing_a_context_fails_pending_replies() -> None:
    ctx = ExecutionContext("workflow", on_request=_pong)
    loop = asyncio.get_running_loop()
    ctx.start()
    await ctx.close()

    with pytest.raises(CommunicationFailure):
        ctx.deliver(Ping(), loop.create_future())
    assert not ctx.is_active


@pytest.mark.asyncio
async def test_closing_a_context_fails_the_request_in_flight() -> None:
    hub = MessageHub(request_timeout=30)
    handling = asyncio.Event()

    async def stuck(message: object) -> Pong:
        handling.set()
        await asyncio.sleep(60)
        return Pong()

    ctx = ExecutionContext("workflow", on_request=stuck)
    ctx.start()
    hub.register(ctx)

    pending = asyncio.create_task(hub.request("workflow", Ping()))
    await handling.wait()
    await ctx.close()

    assert await asyncio.wait_for(pending, timeout=0.5) is None


@pytest.mark.asyncio
async def test_broadcast_reaches_control_and_matching_tabs_only() -> None:
    hub = MessageHub()
    control_events, control = _recorder()
    flow_events: list[object] = []
    other_events: list[object] = []

    async def on_flow(event: object) -> None:
        flow_events.append(event)

    async def on_other(event: object) -> None:
        other_events.append(event)

    flow_tab = ExecutionContext("tab-2", origin="https://labs.google/fx/tools/flow/2", on_event=on_flow)
    other_tab = ExecutionContext("tab-3", origin="https://example.com/", on_event=on_other)
    idle_tab = ExecutionContext("tab-4", origin="https://labs.google/fx/tools/flow/4")
    for ctx in (control, flow_tab, other_tab):
        ctx.start()
    for ctx in (flow_tab, other_tab, idle_tab):
        hub.register(ctx)
    hub.attach_control_surface(control)

    bus = EventBus(hub, source="workflow", target_origin=FLOW_TABS)
    delivered = bus.publish(ProgressEvent(current=1, total=3, prompt="p"))
    await _drain()

    # The idle tab is skipped silently.
    assert delivered == 2
    assert control_events == [ProgressEvent(current=1, total=3, prompt="p")]
    assert flow_events == control_events
    assert other_events == []

    for ctx in (control, flow_tab, other_tab):
        await ctx.close()


@pytest.mark.asyncio
async def test_emitter_does_not_receive_its_own_events() -> None:
    hub = MessageHub()
    own_events: list[object] = []

    async def on_own(event: object) -> None:
        own_events.append(event)

    workflow = ExecutionContext("workflow", origin="https://labs.google/fx/tools/flow", on_event=on_own)
    workflow.start()
    hub.register(workflow)

    EventBus(hub, source="workflow", target_origin=FLOW_TABS).log("hello", Severity.SUCCESS)
    await _drain()

    assert own_events == []
    await workflow.close()


@pytest.mark.asyncio
async def test_log_goes_to_listeners_and_to_logging(caplog: pytest.LogCaptureFixture) -> None:
    hub = MessageHub()
    received, control = _recorder()
    control.start()
    hub.attach_control_surface(control)

    with caplog.at_level("INFO"):
        EventBus(hub, source="downloads").log("Saved 3 images", Severity.SUCCESS)
        await _drain()

    assert received == [LogEvent(message="Saved 3 images", severity=Severity.SUCCESS)]
    assert "Saved 3 images" in caplog.text
    await control.close()


@pytest.mark.asyncio
async def test_events_are_delivered_in_emission_order() -> None:
    hub = MessageHub()
    received, control = _recorder()
    control.start()
    hub.attach_control_surface(control)
    bus = EventBus(hub, source="workflow")

    for i in range(20):
        bus.publish(ProgressEvent(current=i, total=20))
    await asyncio.sleep(0.01)

    assert [e.current for e in received] == list(range(20))  # type: ignore[attr-defined]
    await control.close()


def test_wire_messages_are_discriminated() -> None:
    event = event_adapter.validate_python({"type": "log", "message": "hi", "severity": "warning"})
    assert event == LogEvent(message="hi", severity=Severity.WARNING)

    request = request_adapter.validate_python({"action": "stop_run"})
    assert isinstance(request, StopRun)
