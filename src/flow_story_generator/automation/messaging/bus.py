"""Message passing between execution contexts.

Each `ExecutionContext` owns an inbox and serves it from its own task, one
message at a time. Contexts never call each other directly:

- `MessageHub.request` delivers a request and awaits the reply. Any failure
  (unknown or closed recipient, handler error, timeout) is logged and turned
  into `None` for the caller.
- `MessageHub.broadcast` / `EventBus.publish` fan events out best-effort to the
  attached control surface and every workflow context whose origin matches.
  A recipient that is not listening is skipped silently.
"""

from __future__ import annotations

import asyncio
import contextlib
import fnmatch
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from pydantic import BaseModel

from flow_story_generator.automation.errors import CommunicationFailure

from .events import Event, LogEvent, Severity
from .messages import Request, Response

logger = logging.getLogger(__name__)

RequestHandler = Callable[[Request], Awaitable[Response]]
EventHandler = Callable[[Event], Awaitable[None]]

_SEVERITY_LEVELS: dict[Severity, int] = {
    Severity.DEBUG: logging.DEBUG,
    Severity.INFO: logging.INFO,
    Severity.SUCCESS: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


@dataclass(slots=True)
class _Envelope:
    message: BaseModel
    reply: asyncio.Future[Response] | None = None


class ExecutionContext:
    """An isolated participant with its own inbox and serving task."""

    def __init__(
        self,
        name: str,
        *,
        origin: str = "",
        on_request: RequestHandler | None = None,
        on_event: EventHandler | None = None,
        max_pending: int = 1000,
    ) -> None:
        self.name = name
        self.origin = origin
        self._on_request = on_request
        self._on_event = on_event
        self._inbox: asyncio.Queue[_Envelope] = asyncio.Queue(maxsize=max_pending)
        self._task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def is_active(self) -> bool:
        return not self._closed and self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._serve(), name=f"context-{self.name}")

    async def close(self) -> None:
        self._closed = True
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        while not self._inbox.empty():
            envelope = self._inbox.get_nowait()
            if envelope.reply is not None and not envelope.reply.done():
                envelope.reply.set_exception(CommunicationFailure(self.name, "context closed"))

    def deliver(self, message: BaseModel, reply: asyncio.Future[Response] | None = None) -> None:
        if not self.is_active:
            raise CommunicationFailure(self.name, "context is not listening")
        try:
            self._inbox.put_nowait(_Envelope(message=message, reply=reply))
        except asyncio.QueueFull as e:
            raise CommunicationFailure(self.name, "inbox full") from e

    async def _serve(self) -> None:
        while True:
            envelope = await self._inbox.get()
            try:
                await self._dispatch(envelope)
            finally:
                self._inbox.task_done()

    async def _dispatch(self, envelope: _Envelope) -> None:
        if envelope.reply is None:
            if self._on_event is None:
                return
            try:
                await self._on_event(envelope.message)  # type: ignore[arg-type]
            except Exception:
                logger.exception("Event handler failed", extra={"context": self.name})
            return

        reply = envelope.reply
        if self._on_request is None:
            reply.set_exception(CommunicationFailure(self.name, "context accepts no requests"))
            return
        try:
            response = await self._on_request(envelope.message)  # type: ignore[arg-type]
        except asyncio.CancelledError:
            # Closed mid-request: the caller must not sit out its timeout.
            if not reply.done():
                reply.set_exception(CommunicationFailure(self.name, "context closed"))
            raise
        except Exception as e:
            logger.exception("Request handler failed", extra={"context": self.name})
            if not reply.done():
                reply.set_exception(CommunicationFailure(self.name, f"handler error: {e}"))
            return
        if not reply.done():
            reply.set_result(response)


class MessageHub:
    """Routes requests and broadcasts between registered contexts."""

    def __init__(self, *, request_timeout: float = 10.0) -> None:
        self._request_timeout = request_timeout
        self._contexts: dict[str, ExecutionContext] = {}
        self._control_surface: ExecutionContext | None = None

    @property
    def control_surface(self) -> ExecutionContext | None:
        return self._control_surface

    def register(self, context: ExecutionContext) -> None:
        self._contexts[context.name] = context

    def unregister(self, name: str) -> None:
        self._contexts.pop(name, None)

    def attach_control_surface(self, context: ExecutionContext) -> None:
        self._control_surface = context

    def detach_control_surface(self) -> None:
        self._control_surface = None

    def contexts(self, origin_pattern: str | None = None) -> list[ExecutionContext]:
        if origin_pattern is None:
            return list(self._contexts.values())
        return [
            ctx
            for ctx in self._contexts.values()
            if ctx.origin and fnmatch.fnmatchcase(ctx.origin, origin_pattern)
        ]

    async def request(self, target: str, message: BaseModel) -> Response | None:
        try:
            return await self._round_trip(target, message)
        except CommunicationFailure as e:
            logger.warning(
                "Communication error",
                extra={"target": target, "action": getattr(message, "action", None), "reason": e.reason},
            )
            return None

    async def _round_trip(self, target: str, message: BaseModel) -> Response:
        context = self._contexts.get(target)
        if context is None:
            raise CommunicationFailure(target, "no such context")

        reply: asyncio.Future[Response] = asyncio.get_running_loop().create_future()
        context.deliver(message, reply)
        try:
            return await asyncio.wait_for(reply, timeout=self._request_timeout)
        except TimeoutError as e:
            raise CommunicationFailure(target, "no response before timeout") from e

    def broadcast(
        self, event: BaseModel, *, origin_pattern: str | None = None, exclude: str | None = None
    ) -> int:
        """Deliver to the control surface and matching contexts; returns how many accepted it."""

        recipients: list[ExecutionContext] = []
        if self._control_surface is not None:
            recipients.append(self._control_surface)
        recipients.extend(self.contexts(origin_pattern))

        delivered = 0
        for context in recipients:
            if context.name == exclude:
                continue
            try:
                context.deliver(event)
            except CommunicationFailure:
                # Nobody listening there right now.
                continue
            delivered += 1
        return delivered


class EventBus:
    """Publishing side of the hub, bound to the emitting context."""

    def __init__(self, hub: MessageHub, *, source: str, target_origin: str | None = None) -> None:
        self._hub = hub
        self._source = source
        self._target_origin = target_origin

    def publish(self, event: BaseModel) -> int:
        return self._hub.broadcast(event, origin_pattern=self._target_origin, exclude=self._source)

    def log(self, message: str, severity: Severity = Severity.INFO) -> None:
        logger.log(
            _SEVERITY_LEVELS[severity],
            message,
            extra={"source": self._source, "severity": severity.value},
        )
        self.publish(LogEvent(message=message, severity=severity))
