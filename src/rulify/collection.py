"""RuleList — a list whose elements and length are tracked separately.

Each index read goes through its own ElementSlot, and len() goes through a
LengthSlot, so a formula depends only on what it actually read. The backing
list holds the values; slots are created lazily on first read.

After any mutation, positions whose value changed reset their element slot,
slots past the new end are disposed, and the length slot is reset if the
length changed. Positions that kept their value are left alone, except an
index assigned directly, which always resets its readers.

Usage:
    scores = RuleList([3, 5])

    class Board:
        @rule
        def first(self):
            return scores[0]

    scores[1] = 9   # Board().first is not recomputed
"""

from __future__ import annotations

import operator
from typing import Any, Callable, Iterable

from rulify import promise
from rulify.slot import EMPTY, Slot


class _ListSlot(Slot):
    """A slot whose value lives in its RuleList. Reset only invalidates readers."""

    __slots__ = ()

    def _clear(self) -> None:
        pass

    def _drop(self) -> bool:
        return bool(self._used_by)


class ElementSlot(_ListSlot):
    __slots__ = ()

    def _retrieve(self) -> Any:
        items = self.owner._items
        return items[self.key] if self.key < len(items) else EMPTY

    def _store(self, value: Any) -> None:
        items = self.owner._items
        if self.key < len(items):
            items[self.key] = value

    def set(self, value: Any) -> None:
        self.owner[self.key] = value


class LengthSlot(_ListSlot):
    __slots__ = ()

    def _retrieve(self) -> int:
        return len(self.owner._items)

    def _store(self, value: Any) -> None:
        pass

    def set(self, value: Any) -> None:
        raise TypeError("RuleList length is read-only")


def _differs(old: Any, new: Any) -> bool:
    return old is not new and old != new


class RuleList:
    """A list-like collection with per-index and length dependency tracking."""

    def __init__(self, items: Iterable[Any] | None = None) -> None:
        self._items: list[Any] = list(items) if items is not None else []
        self._slots: dict[int, ElementSlot] = {}
        self._length = LengthSlot(self, "length")
        for index in range(len(self._items)):
            self._watch_item(index)

    # --- Slots ---

    def slot(self, key: int | str) -> Slot:
        """The slot behind an index, or behind "length"."""
        if key == "length":
            return self._length
        index = self._normalize(key)
        return self._slot(index)

    def _slot(self, index: int) -> ElementSlot:
        slot = self._slots.get(index)
        if slot is None:
            slot = self._slots[index] = ElementSlot(self, index)
        return slot

    def release(self, key: int | str | None = None) -> None:
        """Dispose of an element slot, or of all of them. The length slot only resets its readers."""
        if key is None:
            slots = list(self._slots.values())
            self._slots.clear()
        elif key == "length":
            slots = []
        else:
            slot = self._slots.pop(self._normalize(key), None)
            slots = [slot] if slot is not None else []
        for slot in slots:
            slot.dispose()
        if key is None or key == "length":
            self._length.reset()

    def _normalize(self, index: Any) -> int:
        """Resolve a write index against the current items. Untracked."""
        index = operator.index(index)
        length = len(self._items)
        if index < 0:
            index += length
        if not 0 <= index < length:
            raise IndexError("RuleList index out of range")
        return index

    def _watch_item(self, index: int) -> None:
        future = promise.as_future(self._items[index])
        if future is None:
            return
        self._items[index] = future
        promise.watch(self._slot(index), future)

    # --- Mutation ---

    def _mutate(self, change: Callable[[list], Any], written: Iterable[int] = ()) -> Any:
        old = list(self._items)
        result = change(self._items)
        self._reconcile(old, written)
        return result

    def _reconcile(self, old: list, written: Iterable[int] = ()) -> None:
        """Reset what changed. Positions in written were assigned directly and always count."""
        items = self._items
        written = set(written)
        changed = [
            index
            for index in range(len(items))
            if index in written or index >= len(old) or _differs(old[index], items[index])
        ]
        for index in changed:
            self._watch_item(index)
        for index in [index for index in self._slots if index >= len(items)]:
            self._slots.pop(index).dispose()
        for index in changed:
            slot = self._slots.get(index)
            if slot is not None:
                slot.reset()
        if len(old) != len(items):
            self._length.reset()

    @staticmethod
    def _check(values: Iterable[Any]) -> list:
        values = list(values)
        if any(value is EMPTY for value in values):
            raise ValueError("Cannot store EMPTY in a RuleList")
        return values

    def __setitem__(self, index: int | slice, value: Any) -> None:
        if isinstance(index, slice):
            values = self._check(value)
            self._mutate(lambda items: items.__setitem__(index, values))
        else:
            self._check([value])
            position = self._normalize(index)
            self._mutate(lambda items: items.__setitem__(position, value), written=(position,))

    def __delitem__(self, index: int | slice) -> None:
        if not isinstance(index, slice):
            index = self._normalize(index)
        self._mutate(lambda items: items.__delitem__(index))

    def append(self, value: Any) -> None:
        self._check([value])
        self._mutate(lambda items: items.append(value))

    def extend(self, values: Iterable[Any]) -> None:
        values = self._check(values)
        self._mutate(lambda items: items.extend(values))

    def insert(self, index: int, value: Any) -> None:
        self._check([value])
        self._mutate(lambda items: items.insert(index, value))

    def pop(self, index: int = -1) -> Any:
        index = self._normalize(index)
        return self._mutate(lambda items: items.pop(index))

    def remove(self, value: Any) -> None:
        self._mutate(lambda items: items.remove(value))

    def clear(self) -> None:
        self._mutate(lambda items: items.clear())

    # --- Reading (tracked) ---

    def __len__(self) -> int:
        return self._length.get()

    def __getitem__(self, index: int | slice) -> Any:
        if isinstance(index, slice):
            return [self[i] for i in range(*index.indices(len(self)))]
        index = operator.index(index)
        if not 0 <= index < len(self._items):
            # Whether this read succeeds depends on the length.
            length = len(self)
            if index < 0:
                index += length
            if not 0 <= index < length:
                raise IndexError("RuleList index out of range")
        return self._slot(index).get()

    def __iter__(self):
        for index in range(len(self)):
            yield self[index]

    def __contains__(self, value: Any) -> bool:
        return any(item is value or item == value for item in self)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, RuleList):
            return list(self) == list(other)
        if isinstance(other, (list, tuple)):
            return list(self) == list(other)
        return NotImplemented

    __hash__ = None

    def __str__(self) -> str:
        return str(self._items)

    def __repr__(self) -> str:
        return f"RuleList({self._items!r})"
