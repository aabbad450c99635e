"""Promise contagion — pending values that spread to their readers.

A slot holding an unsettled Future is pending. A formula that reads a pending
slot stops at that read; its own slot becomes pending too, holding a
placeholder Future. When the original Future settles, every slot that
(transitively) read it is reset and demanded again, and each placeholder is
resolved with the value a synchronous computation would have produced.

Settlements are always processed by a done-callback on the event loop, even
for Futures that were already done when stored.
"""

from __future__ import annotations

import asyncio
import contextvars
import functools
import inspect
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from rulify.slot import Slot

logger = logging.getLogger("rulify.promise")


def is_future(value: Any) -> bool:
    return asyncio.isfuture(value)


def is_pending(value: Any) -> bool:
    """Is value an asynchronous value that has not settled yet?"""
    return asyncio.isfuture(value) and not value.done()


def as_future(value: Any) -> asyncio.Future | None:
    """Return value as a Future if it is awaitable, else None.

    Coroutines are scheduled with asyncio.ensure_future, which needs a
    running event loop.
    """
    if asyncio.isfuture(value):
        return value
    if inspect.isawaitable(value):
        return asyncio.ensure_future(value)
    return None


def placeholder(awaited: asyncio.Future) -> asyncio.Future:
    """A fresh placeholder on the same loop as the Future being awaited."""
    return awaited.get_loop().create_future()


def settle(target: asyncio.Future, value: Any) -> None:
    """Resolve target with value, or make it follow value if that is a Future."""
    if target.done():
        return
    if asyncio.isfuture(value):
        value.add_done_callback(functools.partial(_copy, target))
    else:
        target.set_result(value)


def _copy(target: asyncio.Future, source: asyncio.Future) -> None:
    if target.done():
        return
    if source.cancelled():
        target.cancel()
    elif source.exception() is not None:
        target.set_exception(source.exception())
    else:
        target.set_result(source.result())


def watch(slot: Slot, future: asyncio.Future) -> None:
    """Arrange for slot's dependents to be recomputed when future settles."""
    # A fresh context: the callback must never see a computation's frames.
    future.add_done_callback(functools.partial(_on_settled, slot), context=contextvars.Context())


def _on_settled(slot: Slot, future: asyncio.Future) -> None:
    if slot._disposed or slot._retrieve() is not future:
        logger.debug("Ignoring stale settlement for %s", slot)
        return
    if future.cancelled():
        _reject(slot, asyncio.CancelledError())
    elif future.exception() is not None:
        _reject(slot, future.exception())
    else:
        _resolve(slot, future.result())


def _resolve(slot: Slot, value: Any) -> None:
    dependents = _transitive_dependents(slot)
    future = as_future(value)
    if future is not None:
        # Resolved to another awaitable: stay pending until that one settles.
        slot._store(future)
        watch(slot, future)
        return
    slot._store(value)
    logger.debug("%s resolved; recomputing %d dependent(s)", slot, len(dependents))
    for dependent in dependents:
        dependent.reset()
    for dependent in dependents:
        awaited = dependent._placeholder is not None
        try:
            dependent.get()
        except Exception:
            if not awaited:
                logger.exception("Recomputing %s after %s resolved", dependent, slot)


def _reject(slot: Slot, error: BaseException) -> None:
    dependents = _transitive_dependents(slot)
    logger.debug("%s rejected; failing %d dependent(s)", slot, len(dependents))
    for dependent in dependents:
        dependent._fail(error)


def _transitive_dependents(slot: Slot) -> list[Slot]:
    """Every slot that read slot, directly or through others, in discovery order."""
    found: dict[int, Slot] = {}
    stack = list(slot._used_by.values())[::-1]
    while stack:
        dependent = stack.pop()
        if dependent._id in found:
            continue
        found[dependent._id] = dependent
        stack.extend(list(dependent._used_by.values())[::-1])
    return list(found.values())
