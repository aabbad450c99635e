"""Tests for Slot — caching, dependency edges and invalidation."""

import gc
import threading

import pytest

from rulify import EMPTY, CycleError, NoValueError, Slot, add_dependency, set_scheduler


class _Owner:
    pass


class _Named:
    def __str__(self):
        return "sheet"


class TestReading:
    def test_stored_value(self):
        s = Slot(_Owner(), "x", init=3)
        assert s.get() == 3

    def test_none_is_a_value(self):
        s = Slot(_Owner(), "x", init=None)
        s.set(None)
        assert s.get() is None

    def test_formula_receives_owner(self):
        owner = _Owner()
        owner.n = 4
        s = Slot(owner, "double", lambda o: o.n * 2)
        assert s.get() == 8

    def test_lazy(self):
        calls = []
        Slot(_Owner(), "x", lambda o: calls.append(1) or 1)
        assert calls == []

    def test_memoized(self):
        calls = []

        def fn(owner):
            calls.append(1)
            return 10

        s = Slot(_Owner(), "x", fn)
        assert s.get() == 10
        assert s.get() == 10
        assert len(calls) == 1

    def test_no_formula_no_value(self):
        s = Slot(_Owner(), "x")
        with pytest.raises(NoValueError, match="No rule value"):
            s.get()

    def test_formula_returning_empty(self):
        s = Slot(_Owner(), "x", lambda o: EMPTY)
        with pytest.raises(NoValueError):
            s.get()

    def test_formula_error_propagates_unchanged(self):
        def fn(owner):
            raise ValueError("boom")

        s = Slot(_Owner(), "x", fn)
        with pytest.raises(ValueError, match="boom"):
            s.get()

    def test_failed_computation_commits_no_edges(self):
        owner = _Owner()
        a = Slot(owner, "a", init=1)

        def fn(o):
            a.get()
            raise ValueError("boom")

        b = Slot(owner, "b", fn)
        with pytest.raises(ValueError):
            b.get()
        assert b.requires == ()
        assert a.used_by == ()


class TestDependencies:
    def test_edges_are_symmetric(self):
        owner = _Owner()
        a = Slot(owner, "a", init=1)
        b = Slot(owner, "b", lambda o: a.get() + 1)
        assert b.get() == 2
        assert b.requires == (a,)
        assert a.used_by == (b,)

    def test_reads_outside_formulas_are_untracked(self):
        owner = _Owner()
        a = Slot(owner, "a", init=1)
        a.get()
        assert a.used_by == ()

    def test_add_dependency_is_idempotent(self):
        owner = _Owner()
        a = Slot(owner, "a", init=1)
        b = Slot(owner, "b", init=2)
        add_dependency(b, a)
        add_dependency(b, a)
        assert b.requires == (a,)
        assert a.used_by == (b,)

    def test_repeated_reads_make_one_edge(self):
        owner = _Owner()
        a = Slot(owner, "a", init=2)
        b = Slot(owner, "b", lambda o: a.get() * a.get())
        assert b.get() == 4
        assert b.requires == (a,)

    def test_dynamic_dependencies(self):
        owner = _Owner()
        flag = Slot(owner, "flag", init=True)
        a = Slot(owner, "a", init=1)
        b = Slot(owner, "b", init=2)
        c = Slot(owner, "c", lambda o: a.get() if flag.get() else b.get())
        assert c.get() == 1
        flag.set(False)
        assert c.get() == 2
        assert set(c.requires) == {flag, b}
        assert a.used_by == ()

    def test_used_by_does_not_keep_dependents_alive(self):
        owner = _Owner()
        a = Slot(owner, "a", init=1)
        b = Slot(owner, "b", lambda o: a.get())
        b.get()
        assert len(a.used_by) == 1
        del b
        gc.collect()
        assert a.used_by == ()


class TestInvalidation:
    def test_write_resets_dependent(self):
        owner = _Owner()
        a = Slot(owner, "a", init=5)
        b = Slot(owner, "b", lambda o: a.get() * 2)
        assert b.get() == 10
        a.set(6)
        assert b.get() == 12

    def test_chain_recomputes_once(self):
        owner = _Owner()
        calls = []
        a = Slot(owner, "a", init=1)
        b = Slot(owner, "b", lambda o: a.get() + 1)

        def c_fn(o):
            calls.append(1)
            return b.get() + 1

        c = Slot(owner, "c", c_fn)
        assert c.get() == 3
        a.set(10)
        a.set(20)
        assert c.get() == 22
        assert len(calls) == 2

    def test_writing_both_upstream_slots(self):
        owner = _Owner()
        calls = []
        a = Slot(owner, "a", init=1)
        b = Slot(owner, "b", lambda o: a.get() + 1)

        def c_fn(o):
            calls.append(1)
            return b.get() * 10

        c = Slot(owner, "c", c_fn)
        c.get()
        a.set(2)
        b.set(7)
        assert c.get() == 70
        assert len(calls) == 2

    def test_diamond_resets_each_once(self):
        owner = _Owner()
        calls = []
        top = Slot(owner, "top", init=1)
        left = Slot(owner, "left", lambda o: top.get() + 1)
        right = Slot(owner, "right", lambda o: top.get() + 2)

        def bottom_fn(o):
            calls.append(1)
            return left.get() + right.get()

        bottom = Slot(owner, "bottom", bottom_fn)
        assert bottom.get() == 5
        top.set(2)
        assert bottom.get() == 7
        assert len(calls) == 2

    def test_explicit_write_is_not_overridden(self):
        owner = _Owner()
        a = Slot(owner, "a", init=1)
        b = Slot(owner, "b", lambda o: a.get() + 1)
        c = Slot(owner, "c", lambda o: b.get() + 1)
        c.get()
        c.set(100)
        a.set(5)
        b.set(50)
        assert c.get() == 100
        c.reset()
        assert c.get() == 51

    def test_explicit_write_resets_dependents(self):
        owner = _Owner()
        a = Slot(owner, "a", lambda o: 1)
        b = Slot(owner, "b", lambda o: a.get() + 1)
        assert b.get() == 2
        a.set(9)
        assert b.get() == 10

    def test_write_empty_forces_recompute(self):
        calls = []

        def fn(o):
            calls.append(1)
            return len(calls)

        s = Slot(_Owner(), "x", fn)
        assert s.get() == 1
        s.set(5)
        assert s.get() == 5
        s.set(EMPTY)
        assert s.get() == 2

    def test_reset_of_empty_slot_is_noop(self):
        owner = _Owner()
        s = Slot(owner, "x", lambda o: 1)
        assert s.reset() is False
        assert repr(s) == "Slot('x', empty)"

    def test_reset_twice(self):
        s = Slot(_Owner(), "x", lambda o: 1)
        s.get()
        assert s.reset() is True
        assert s.reset() is False

    def test_long_chain_resets_every_link(self):
        owner = _Owner()
        chain = [Slot(owner, "source", init=0)]
        for index in range(3000):
            chain.append(Slot(owner, index, lambda o, prev=chain[-1]: prev.get() + 1))
            chain[-1].get()
        chain[0].set(1)
        assert repr(chain[-1]) == "Slot(2999, empty)"
        assert [slot.get() for slot in chain][-1] == 3001

    def test_dispose_resets_dependents(self):
        owner = _Owner()
        a = Slot(owner, "a", init=1)
        b = Slot(owner, "b", lambda o: a.get() + 1)
        b.get()
        a.dispose()
        assert b.used_by == ()
        assert a.used_by == ()
        assert repr(b) == "Slot('b', empty)"


class TestCycles:
    def _three_way(self):
        owner = _Owner()
        slots = {}
        slots["a"] = Slot(owner, "a", lambda o: slots["b"].get())
        slots["b"] = Slot(owner, "b", lambda o: slots["c"].get())
        slots["c"] = Slot(owner, "c", lambda o: slots["a"].get())
        return slots

    @pytest.mark.parametrize("entry", ["a", "b", "c"])
    def test_three_way_cycle(self, entry):
        slots = self._three_way()
        with pytest.raises(CycleError) as info:
            slots[entry].get()
        path = info.value.path
        assert path[0] is slots[entry]
        assert path[-1] is slots[entry]
        assert len(path) == 4

    def test_self_reference(self):
        slots = {}
        slots["x"] = Slot(_Owner(), "x", lambda o: slots["x"].get() + 1)
        with pytest.raises(CycleError, match="depends on itself"):
            slots["x"].get()

    def test_cycle_leaves_no_edges(self):
        slots = self._three_way()
        with pytest.raises(CycleError):
            slots["a"].get()
        for slot in slots.values():
            assert slot.requires == ()
            assert slot.used_by == ()

    def test_recovers_after_cycle_broken(self):
        slots = self._three_way()
        with pytest.raises(CycleError):
            slots["a"].get()
        slots["c"].set(3)
        assert slots["a"].get() == 3


class TestLabels:
    def test_str_uses_owner_class(self):
        s = Slot(_Owner(), "width")
        assert str(s) == "[Slot [_Owner] width]"

    def test_str_uses_owner_str(self):
        s = Slot(_Named(), "width")
        assert str(s) == "[Slot sheet width]"

    def test_repr_states(self):
        s = Slot(_Owner(), "x", lambda o: 3)
        assert repr(s) == "Slot('x', empty)"
        s.get()
        assert repr(s) == "Slot('x', cached=3)"

    def test_cycle_message_names_path(self):
        slots = {}
        slots["x"] = Slot(_Named(), "x", lambda o: slots["y"].get())
        slots["y"] = Slot(_Named(), "y", lambda o: slots["x"].get())
        with pytest.raises(CycleError) as info:
            slots["x"].get()
        message = str(info.value)
        assert "[Slot sheet x]" in message
        assert "[Slot sheet y]" in message


class TestAutoMarshal:
    """Slot.set() marshals writes made on other threads."""

    def test_owning_thread_is_synchronous(self):
        calls = []
        set_scheduler(lambda f: calls.append(f))
        s = Slot(_Owner(), "x", init=1)
        s.set(2)
        assert s.get() == 2
        assert calls == []

    def test_background_thread_marshals(self):
        queued = []
        set_scheduler(queued.append)
        s = Slot(_Owner(), "x", init=1)
        t = threading.Thread(target=lambda: s.set(42))
        t.start()
        t.join()
        assert s.get() == 1
        assert len(queued) == 1
        queued[0]()
        assert s.get() == 42

    def test_no_scheduler_writes_directly(self):
        s = Slot(_Owner(), "x", init=1)
        t = threading.Thread(target=lambda: s.set(7))
        t.start()
        t.join()
        assert s.get() == 7
