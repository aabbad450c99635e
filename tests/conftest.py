"""Shared fixtures: every test starts with an empty eager queue and default hosts."""

import pytest

from rulify import _tracking, set_scheduler, set_tick


@pytest.fixture(autouse=True)
def _fresh_scheduling():
    _tracking.clear_pending()
    set_tick(None)
    set_scheduler(None)
    yield
    _tracking.clear_pending()
    set_tick(None)
    set_scheduler(None)
