from __future__ import annotations

from enum import Enum


class RunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    COMPLETED = "completed"


# RUNNING/PAUSED -> RUNNING is a restart: a new start request while a run is active.
ALLOWED_TRANSITIONS: dict[RunStatus, set[RunStatus]] = {
    RunStatus.IDLE: {RunStatus.RUNNING},
    RunStatus.RUNNING: {
        RunStatus.RUNNING,
        RunStatus.PAUSED,
        RunStatus.STOPPED,
        RunStatus.COMPLETED,
    },
    RunStatus.PAUSED: {RunStatus.RUNNING, RunStatus.STOPPED},
    RunStatus.STOPPED: {RunStatus.RUNNING},
    RunStatus.COMPLETED: {RunStatus.RUNNING},
}

ACTIVE_STATUSES: frozenset[RunStatus] = frozenset({RunStatus.RUNNING, RunStatus.PAUSED})


class IllegalTransitionError(ValueError):
    pass


def transition(*, current: RunStatus, to: RunStatus) -> RunStatus:
    allowed = ALLOWED_TRANSITIONS.get(current, set())
    if to not in allowed:
        raise IllegalTransitionError(f"Illegal transition: {current.value} -> {to.value}")
    return to
