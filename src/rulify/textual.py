"""Textual integration for rulify. Opt-in — requires textual.

install(app) makes a Textual App the host loop: eager rules run on
app.call_next, and slot writes from worker threads are marshaled with
app.call_from_thread. Call it on the app's thread, e.g. from on_mount.

Eager turns are held while the widget tree is being replaced (pause) or the
app is not running, and replayed when it is safe again. NoMatches raised by
a widget query inside an eager rule is swallowed; the rule stays empty until
its next demand.
"""

import logging
from contextlib import contextmanager

from textual.css.query import NoMatches

from rulify import _tracking
from rulify.slot import set_scheduler

logger = logging.getLogger("rulify.textual")

# Paused apps, keyed by id(app).
_paused_apps: set[int] = set()
# Eager turns that arrived while an app was unsafe, replayed by release().
_held: dict[int, list] = {}


@contextmanager
def pause(app):
    """Hold eager turns during widget replacement."""
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)
        if is_safe(app):
            release(app)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


def release(app) -> None:
    """Replay eager turns held while app was unsafe."""
    for callback in _held.pop(id(app), []):
        app.call_next(_guarded, app, callback)


def _guarded(app, callback) -> None:
    if not is_safe(app):
        _held.setdefault(id(app), []).append(callback)
        return
    try:
        callback()
    except NoMatches:
        logger.debug("Eager rule queried a missing widget", exc_info=True)


def install(app) -> None:
    """Route eager turns and cross-thread writes through app."""
    _tracking.set_tick(lambda callback: app.call_next(_guarded, app, callback))
    set_scheduler(app.call_from_thread)


def uninstall(app) -> None:
    """Restore the default host. Turns held for app are requested again from it."""
    _tracking.set_tick(None)
    set_scheduler(None)
    _held.pop(id(app), None)
    _paused_apps.discard(id(app))
