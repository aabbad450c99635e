"""Store — a record whose keys are rules.

A Store is built from a schema of names. Callables become formulas (they
receive the Store); anything else is an initial value. Keys are readable as
attributes or items. Rules can be added to a single Store at any time with
set() or attach(); other attributes set on a Store are ordinary and untracked.
Names the class already defines, such as get, set, keys and reset, cannot be
used as keys.

Usage:
    rect = Store({"width": 7, "length": 5, "area": lambda s: s.width * s.length})
    rect.area            # 35
    rect["length"] = 6
    rect.area            # 42
"""

from __future__ import annotations

from typing import Any, Iterable, Iterator

from rulify.rule import Assignment, RuleProperty, attach


class Store:
    """Key-based container of rules."""

    def __init__(
        self,
        schema: dict[str, Any] | None = None,
        *,
        assignment: Assignment | None = None,
        eager_names: Iterable[str] = (),
    ) -> None:
        self.__dict__["_own_rules"] = {}
        self.__dict__["_assignment"] = assignment
        eager_names = set(eager_names)
        for key, value in (schema or {}).items():
            attach(self, key, value, assignment=assignment, eager=key in eager_names)

    @property
    def _rules(self) -> dict[str, RuleProperty]:
        return self.__dict__["_own_rules"]

    def get(self, key: str, default: Any = None) -> Any:
        prop = self._rules.get(key)
        return prop.__get__(self) if prop is not None else default

    def set(self, key: str, value: Any) -> None:
        """Write key. A key the Store does not have yet becomes a stored rule."""
        prop = self._rules.get(key)
        if prop is None and isinstance(getattr(type(self), key, None), RuleProperty):
            prop = getattr(type(self), key)
        if prop is None:
            attach(self, key, assignment=self.__dict__["_assignment"])
            prop = self._rules[key]
        prop.__set__(self, value)

    def reset(self, key: str) -> None:
        """Force key to recompute on its next read."""
        self._rules[key].slot(self).reset()

    def keys(self) -> list[str]:
        return list(self._rules)

    def __contains__(self, key: object) -> bool:
        return key in self._rules

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._rules))

    def __getitem__(self, key: str) -> Any:
        prop = self._rules.get(key)
        if prop is None:
            raise KeyError(key)
        return prop.__get__(self)

    def __setitem__(self, key: str, value: Any) -> None:
        self.set(key, value)

    def __delitem__(self, key: str) -> None:
        prop = self._rules.get(key)
        if prop is None:
            raise KeyError(key)
        prop.__delete__(self)

    def __getattr__(self, name: str) -> Any:
        # Only reached when normal lookup fails.
        rules = self.__dict__.get("_own_rules", {})
        if name in rules:
            return rules[name].__get__(self)
        raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")

    def __setattr__(self, name: str, value: Any) -> None:
        prop = self._rules.get(name)
        if prop is not None:
            prop.__set__(self, value)
        else:
            object.__setattr__(self, name, value)

    def __delattr__(self, name: str) -> None:
        prop = self._rules.get(name)
        if prop is not None:
            prop.__delete__(self)
        else:
            object.__delattr__(self, name)

    def __repr__(self) -> str:
        return f"Store({', '.join(self._rules)})"
