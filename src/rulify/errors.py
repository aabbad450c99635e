"""Errors raised by the rule engine.

Formula exceptions are never wrapped: they reach the reader unchanged.
Only the engine's own failures get a class here.
"""

from __future__ import annotations


class RuleError(Exception):
    """Base class for errors raised by the engine itself."""


class CycleError(RuleError):
    """A rule read itself, directly or transitively, while being computed."""

    def __init__(self, path: tuple) -> None:
        self.path = path
        chain = "".join(f"\n  {slot}" for slot in path)
        super().__init__(f"Circular rule {path[-1]} depends on itself within computation:{chain}")


class NoValueError(RuleError):
    """A rule was read that was never written and has no formula, or whose formula gave EMPTY."""

    def __init__(self, slot) -> None:
        self.slot = slot
        super().__init__(f"No rule value for {slot}.")


class PendingDependency(BaseException):
    """Control signal: a computation read a rule whose value is still pending.

    Caught by the computing rule, which then becomes pending itself.
    """

    def __init__(self, slot, future) -> None:
        self.slot = slot
        self.future = future
        super().__init__(slot)
