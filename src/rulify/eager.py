"""Eager slots — recompute on the next turn instead of on the next read.

An eager slot behaves like any other slot, but when it is reset it queues
itself to be demanded again on the next turn of the host loop. Several resets
in one turn run the formula once.

Usage:
    class Report:
        rows = rule((3, 4))

        @rule(eager=True)
        def total(self):
            return sum(self.rows)
"""

from __future__ import annotations

from typing import Any

from rulify import _tracking
from rulify.slot import EMPTY, Slot


class EagerSlot(Slot):
    """A Slot that re-demands itself after every reset."""

    __slots__ = ()

    def _drop(self) -> bool:
        if not super()._drop():
            return False
        if self.formula is not None:
            _tracking.schedule(self)
        return True

    def _set_direct(self, value: Any) -> None:
        super()._set_direct(value)
        if value is EMPTY and self.formula is not None:
            _tracking.schedule(self)
