"""Error kinds raised by the automation engine.

Timeouts and retry exhaustion are values, not exceptions: see
`workflow.waiting.TIMED_OUT` and `workflow.retry.RetryOutcome.EXHAUSTED`.
"""

from __future__ import annotations


class FlowStoryError(Exception):
    """Base class for engine errors."""


class AffordanceNotFound(FlowStoryError):
    """An expected page control never appeared. Recoverable by retry."""

    def __init__(self, affordance: str, message: str | None = None) -> None:
        self.affordance = affordance
        super().__init__(message or f"{affordance} not found")


class AttachmentNotFound(AffordanceNotFound):
    """No file input surface appeared after every attachment heuristic."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            "file input",
            message or "File input not found. Run scan-page to list available controls.",
        )


class CommunicationFailure(FlowStoryError):
    """A cross-context request/response round trip failed."""

    def __init__(self, target: str, reason: str) -> None:
        self.target = target
        self.reason = reason
        super().__init__(f"Request to {target!r} failed: {reason}")
