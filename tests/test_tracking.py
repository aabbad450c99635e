"""Tests for the evaluation stack and the next-turn queue."""

import contextvars

import pytest

from rulify import Slot, _tracking, flush, get_pending_count, set_tick


class _Owner:
    pass


class _Recorder:
    """Stands in for a scheduled slot."""

    _ids = iter(range(10_000, 20_000))

    def __init__(self, log, fail=False):
        self._id = next(self._ids)
        self.log = log
        self.fail = fail

    def _run(self):
        self.log.append(self)
        if self.fail:
            raise RuntimeError("eager failure")


class TestStack:
    def test_empty_outside_computation(self):
        assert _tracking.current_stack() == ()
        assert _tracking.note_read(Slot(_Owner(), "x")) is False

    def test_stack_during_nested_computation(self):
        seen = []
        owner = _Owner()
        inner = Slot(owner, "inner", lambda o: seen.append(_tracking.current_stack()) or 1)
        outer = Slot(owner, "outer", lambda o: inner.get())
        outer.get()
        assert seen == [(outer, inner)]
        assert _tracking.current_stack() == ()

    def test_frames_inactive_in_copied_context(self):
        captured = []
        owner = _Owner()
        a = Slot(owner, "a", init=1)

        def fn(o):
            captured.append(contextvars.copy_context())
            return 0

        b = Slot(owner, "b", fn)
        b.get()
        # Runs later with b's frame still in the copied context.
        assert captured[0].run(_tracking.note_read, a) is False
        assert captured[0].run(_tracking.is_cycle, b) is False
        assert captured[0].run(a.get) == 1
        assert a.used_by == ()

    def test_exit_commits_collected_reads(self):
        owner = _Owner()
        a = Slot(owner, "a", init=1)
        b = Slot(owner, "b", init=2)
        entered = _tracking.enter(b)
        assert _tracking.note_read(a) is True
        _tracking.exit(entered)
        assert b.requires == (a,)

    def test_exit_without_commit_discards(self):
        owner = _Owner()
        a = Slot(owner, "a", init=1)
        b = Slot(owner, "b", init=2)
        entered = _tracking.enter(b)
        _tracking.note_read(a)
        _tracking.exit(entered, commit=False)
        assert b.requires == ()


class TestNextTurnQueue:
    def test_flush_runs_pending(self):
        log = []
        r = _Recorder(log)
        _tracking.schedule(r)
        assert get_pending_count() == 1
        flush()
        assert log == [r]
        assert get_pending_count() == 0

    def test_scheduling_twice_runs_once(self):
        log = []
        r = _Recorder(log)
        _tracking.schedule(r)
        _tracking.schedule(r)
        flush()
        assert log == [r]

    def test_custom_tick(self):
        turns = []
        set_tick(turns.append)
        log = []
        _tracking.schedule(_Recorder(log))
        _tracking.schedule(_Recorder(log))
        assert len(turns) == 1
        assert log == []
        turns[0]()
        assert len(log) == 2

    def test_failure_requeues_rest(self):
        turns = []
        set_tick(turns.append)
        log = []
        bad = _Recorder(log, fail=True)
        good = _Recorder(log)
        _tracking.schedule(bad)
        _tracking.schedule(good)
        with pytest.raises(RuntimeError, match="eager failure"):
            turns[0]()
        assert log == [bad]
        assert get_pending_count() == 1
        assert len(turns) == 2
        turns[1]()
        assert log == [bad, good]

    def test_clear_pending(self):
        _tracking.schedule(_Recorder([]))
        _tracking.clear_pending()
        assert get_pending_count() == 0
