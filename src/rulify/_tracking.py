"""Evaluation stack and eager scheduling — the heart of rulify.

Uses contextvars to track which rule is being computed, so that every rule
read during a formula registers itself as a dependency of that computation.
Dependencies are collected in the frame and committed only when the
computation ends (or suspends on a pending value).

Eager rules that were reset are queued here and re-demanded on the next
turn of the host loop. Several resets in one turn run the rule once.
"""

from __future__ import annotations

import asyncio
import contextvars
import logging
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from rulify.slot import Slot

logger = logging.getLogger("rulify.eager")


class Frame:
    """One computation of one slot."""

    __slots__ = ("slot", "collecting", "active")

    def __init__(self, slot: Slot) -> None:
        self.slot = slot
        self.collecting: list[Slot] = []
        self.active = True


# The computations in progress, outermost first.
# A task created during a computation inherits a copy of this tuple; its
# frames are inactive by the time the task runs, so nothing there is tracked.
_frames: contextvars.ContextVar[tuple[Frame, ...]] = contextvars.ContextVar(
    "rulify_frames", default=()
)


def current_stack() -> tuple[Slot, ...]:
    """Slots currently being computed, outermost first."""
    return tuple(frame.slot for frame in _frames.get() if frame.active)


def is_cycle(slot: Slot) -> bool:
    return any(frame.active and frame.slot is slot for frame in _frames.get())


def enter(slot: Slot) -> tuple[Frame, contextvars.Token]:
    frame = Frame(slot)
    return frame, _frames.set(_frames.get() + (frame,))


def exit(entered: tuple[Frame, contextvars.Token], commit: bool = True) -> None:
    """Pop a computation. If commit, its collected reads become dependency edges."""
    frame, token = entered
    frame.active = False
    _frames.reset(token)
    if commit:
        for required in frame.collecting:
            frame.slot._require(required)
    frame.collecting.clear()


def note_read(slot: Slot) -> bool:
    """Record slot as read by the innermost computation. False if there is none."""
    frames = _frames.get()
    if not frames or not frames[-1].active:
        return False
    frames[-1].collecting.append(slot)
    return True


# ─── Eager scheduling ────────────────────────────────────────────────────────

# Slots waiting for their turn, keyed by serial so a slot queues once.
_pending: dict[int, Slot] = {}
_turn_requested: bool = False
# Loop the default tick queued the requested turn on; None while deferred.
_turn_loop: asyncio.AbstractEventLoop | None = None

# Next-turn callbacks queued while no event loop was running.
_deferred: list[Callable[[], None]] = []


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def _call_soon(callback: Callable[[], None]) -> None:
    global _turn_loop
    loop = _turn_loop = _running_loop()
    if loop is None:
        _deferred.append(callback)
    else:
        loop.call_soon(callback)


_tick: Callable[[Callable[[], None]], None] = _call_soon


def set_tick(call_soon: Callable[[Callable[[], None]], None] | None) -> None:
    """Set the host's next-turn primitive used for eager rules.

    None restores the default: the running asyncio loop, or the flush() queue.
    A turn requested from the previous host is requested again from the new one.
    """
    global _tick, _turn_requested
    _tick = call_soon if call_soon is not None else _call_soon
    _turn_requested = False
    if _pending:
        _request_turn()


def _request_turn() -> None:
    global _turn_requested
    _turn_requested = True
    _tick(_flush_pending)


def _turn_lost() -> bool:
    """Was the requested turn queued on a loop other than the one running now?"""
    return _tick is _call_soon and _running_loop() is not _turn_loop


def resume() -> None:
    """Make sure a requested turn runs on the loop that is running now.

    Turns deferred while no loop was running move to the running loop. A turn
    queued on a loop that has since stopped is requested again.
    """
    global _turn_loop
    if _deferred:
        loop = _running_loop()
        if loop is not None:
            callbacks = _deferred[:]
            _deferred.clear()
            for callback in callbacks:
                loop.call_soon(callback)
            _turn_loop = loop
    if _turn_requested and _turn_lost():
        _request_turn()


def schedule(slot: Slot) -> None:
    """Queue a slot to be re-demanded on the next turn."""
    _pending[slot._id] = slot
    resume()
    if not _turn_requested:
        _request_turn()


def _flush_pending() -> None:
    """Run all pending eager slots. Handles slots scheduled during the flush."""
    global _turn_requested
    _turn_requested = False
    while _pending:
        # Recomputation may queue more slots; take a snapshot first.
        batch = list(_pending.values())
        _pending.clear()
        logger.debug("Eager turn: %d rule(s)", len(batch))
        for index, slot in enumerate(batch):
            try:
                slot._run()
            except BaseException:
                for rest in batch[index + 1:]:
                    _pending.setdefault(rest._id, rest)
                if _pending and not _turn_requested:
                    _request_turn()
                raise


def flush() -> None:
    """Run queued turns and pending eager slots now."""
    while _deferred:
        _deferred.pop(0)()
    if _pending:
        _flush_pending()


def get_pending_count() -> int:
    """Number of eager slots waiting for their turn. Useful for testing."""
    return len(_pending)


def clear_pending() -> None:
    """Drop every queued turn and eager slot without running them."""
    global _turn_requested, _turn_loop
    _pending.clear()
    _deferred.clear()
    _turn_requested = False
    _turn_loop = None
