"""Workflow engine.

Leaf first: waiting primitives, page steps, retry policy, and the run
controller that owns the run state machine.
"""

__all__: list[str] = []
