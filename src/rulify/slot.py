"""Slots — memoized values that know who read them.

A Slot holds one named value of one owner. It is either stored (written by
the application) or computed by a formula over other slots. Every slot read
while a formula runs becomes a dependency edge. Writing or resetting a slot
resets everything that depends on it, transitively, and those recompute on
their next read.

Edges run both ways. ``_requires`` holds the slots read by the last
computation. ``_used_by`` holds the slots that read this one, weakly, so a
dependent is never kept alive by its producers.

Thread safety: call set_scheduler() once from the owning thread. After that,
any .set() from another thread is marshaled. Owning-thread writes remain
synchronous.
"""

from __future__ import annotations

import itertools
import logging
import threading
import weakref
from typing import Any, Callable

from rulify import _tracking, promise
from rulify.errors import CycleError, NoValueError, PendingDependency

logger = logging.getLogger("rulify.slot")


class _Empty:
    """The value of a slot that has nothing cached."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "EMPTY"

    def __reduce__(self) -> str:
        return "EMPTY"


EMPTY: Any = _Empty()

_serials = itertools.count(1)

# ─── Auto-marshal ────────────────────────────────────────────────────────────
_scheduler = None
_scheduler_thread = None


def set_scheduler(scheduler: Callable[[Callable[[], None]], Any] | None) -> None:
    """Set the thread scheduler for cross-thread slot writes.

    Call once from the owning thread:
        rulify.set_scheduler(app.call_from_thread)

    After this, any Slot.set() from another thread is marshaled through
    scheduler. None turns marshaling off.
    """
    global _scheduler, _scheduler_thread
    _scheduler = scheduler
    _scheduler_thread = threading.current_thread() if scheduler is not None else None


def add_dependency(consumer: Slot, producer: Slot) -> None:
    """Record that consumer read producer. Idempotent."""
    if producer._id in consumer._requires:
        return
    consumer._requires[producer._id] = producer
    producer._used_by[consumer._id] = consumer


class Slot:
    """A named, lazily computed, dependency-tracked value of an owner."""

    __slots__ = (
        "_id",
        "owner",
        "key",
        "formula",
        "_cached",
        "_requires",
        "_used_by",
        "_placeholder",
        "_disposed",
        "__weakref__",
    )

    def __init__(
        self,
        owner: Any,
        key: Any,
        formula: Callable[[Any], Any] | None = None,
        init: Any = EMPTY,
    ) -> None:
        self._id = next(_serials)
        self.owner = owner
        self.key = key
        self.formula = formula
        self._cached = EMPTY
        self._requires: dict[int, Slot] = {}
        self._used_by: weakref.WeakValueDictionary[int, Slot] = weakref.WeakValueDictionary()
        # Outstanding contagion placeholder. Survives resets until settled.
        self._placeholder = None
        self._disposed = False
        if init is not EMPTY:
            self._adopt(init)

    # --- Storage (overridden by collection slots) ---

    def _retrieve(self) -> Any:
        return self._cached

    def _store(self, value: Any) -> None:
        self._cached = value

    def _clear(self) -> None:
        self._cached = EMPTY

    def _is_idle(self) -> bool:
        return self._retrieve() is EMPTY and not self._requires and not self._used_by

    # --- Reading ---

    def get(self) -> Any:
        """Read the value, computing it if needed.

        Inside a formula, the read becomes a dependency of that computation,
        and a pending value suspends the formula instead of being returned.
        """
        value = self._retrieve()
        if value is EMPTY:
            value = self._compute()
        self._track(value)
        return value

    def _track(self, value: Any) -> None:
        if not _tracking.note_read(self):
            return
        if promise.is_future(value):
            if value.done() and (value.cancelled() or value.exception() is not None):
                value.result()  # raises the failure into the reading computation
            raise PendingDependency(self, value)

    def _compute(self) -> Any:
        if self.formula is None:
            raise NoValueError(self)
        if _tracking.is_cycle(self):
            raise CycleError(_tracking.current_stack() + (self,))
        self._detach()
        entered = _tracking.enter(self)
        try:
            value = self.formula(self.owner)
        except PendingDependency as signal:
            _tracking.exit(entered)
            logger.debug("%s waits on %s", self, signal.slot)
            return self._become_pending(signal.future)
        except Exception as error:
            _tracking.exit(entered, commit=False)
            self._fail(error)
            raise
        except BaseException:
            _tracking.exit(entered, commit=False)
            raise
        if value is EMPTY:
            _tracking.exit(entered, commit=False)
            error = NoValueError(self)
            self._fail(error)
            raise error
        _tracking.exit(entered)
        return self._adopt(value)

    def _become_pending(self, awaited) -> Any:
        placeholder = self._placeholder
        if placeholder is None or placeholder.done():
            placeholder = self._placeholder = promise.placeholder(awaited)
        self._store(placeholder)
        return placeholder

    def _adopt(self, value: Any) -> Any:
        """Store a written or computed value, settling any outstanding placeholder."""
        future = promise.as_future(value)
        if future is not None:
            value = future
        self._store(value)
        placeholder, self._placeholder = self._placeholder, None
        if placeholder is not None and placeholder is not value and not placeholder.done():
            promise.settle(placeholder, value)
        if future is not None:
            promise.watch(self, future)
        return value

    def _fail(self, error: Exception) -> None:
        placeholder, self._placeholder = self._placeholder, None
        if placeholder is not None and not placeholder.done():
            placeholder.set_exception(error)

    # --- Writing ---

    def set(self, value: Any) -> None:
        """Write a value, or EMPTY to force recomputation. Auto-marshals from other threads."""
        if _scheduler is not None and threading.current_thread() is not _scheduler_thread:
            _scheduler(lambda v=value: self._set_direct(v))
        else:
            self._set_direct(value)

    def _set_direct(self, value: Any) -> None:
        if value is EMPTY:
            self._clear()
        else:
            self._adopt(value)
        self._detach()
        self._invalidate()
        _tracking.resume()

    def reset(self) -> bool:
        """Return to EMPTY and reset all dependents.

        Unlike set(EMPTY), this is what invalidation calls. Returns False when
        there was nothing to reset.
        """
        if not self._drop():
            return False
        self._invalidate()
        return True

    def _drop(self) -> bool:
        """Clear this slot alone; dependents are left to the caller."""
        if self._is_idle():
            return False
        self._clear()
        self._detach()
        if self._placeholder is not None:
            # Someone awaits us; recompute next turn so the placeholder settles.
            _tracking.schedule(self)
        return True

    def _run(self) -> None:
        """Called by the scheduler on the turn after a reset."""
        if not self._disposed:
            self.get()

    # --- Dependency graph ---

    def _require(self, required: Slot) -> None:
        add_dependency(self, required)

    def _detach(self) -> None:
        """Forget what we read, so those slots stop resetting us."""
        requires = self._requires
        if not requires:
            return
        self._requires = {}
        for required in requires.values():
            required._used_by.pop(self._id, None)

    def _invalidate(self) -> None:
        """Reset every slot that read us, and theirs in turn. Our own edges are drained first."""
        if not self._used_by:
            return
        dependents = list(self._used_by.values())
        self._used_by.clear()
        logger.debug("%s resets %d dependent(s)", self, len(dependents))
        # Iterative: chains can be deeper than the recursion limit.
        dependents.reverse()
        while dependents:
            dependent = dependents.pop()
            if not dependent._drop() or not dependent._used_by:
                continue
            below = list(dependent._used_by.values())
            dependent._used_by.clear()
            below.reverse()
            dependents.extend(below)

    def dispose(self) -> None:
        """Disconnect from the graph. Dependents are reset; late settlements are ignored."""
        self._disposed = True
        self._clear()
        self._detach()
        self._invalidate()
        placeholder, self._placeholder = self._placeholder, None
        if placeholder is not None and not placeholder.done():
            placeholder.cancel()

    # --- Introspection ---

    @property
    def requires(self) -> tuple[Slot, ...]:
        """Slots read by the last computation."""
        return tuple(self._requires.values())

    @property
    def used_by(self) -> tuple[Slot, ...]:
        """Slots whose last computation read this one."""
        return tuple(self._used_by.values())

    @property
    def is_pending(self) -> bool:
        return promise.is_future(self._retrieve())

    def _owner_label(self) -> str:
        owner = self.owner
        if type(owner).__str__ is not object.__str__:
            return str(owner)
        return f"[{type(owner).__name__}]"

    def __str__(self) -> str:
        return f"[{type(self).__name__} {self._owner_label()} {self.key}]"

    def __repr__(self) -> str:
        value = self._retrieve()
        if value is EMPTY:
            state = "empty"
        elif promise.is_future(value):
            state = "pending"
        else:
            state = f"cached={value!r}"
        return f"{type(self).__name__}({self.key!r}, {state})"
