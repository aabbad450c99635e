"""rulify() — turn existing classes, dicts and sequences into rules.

Classes are converted in place: getter-only properties become rules, or, if
the class has none, every public function and plain class value does. A dict
becomes a Store; a list or tuple becomes a RuleList.

Usage:
    @rulify
    class Rect:
        width = rule(7)
        length = rule(5)

        @property
        def area(self):
            return self.width * self.length

    @rulify(eager_names=["area"])
    class Square:
        side = 3

        def area(self):
            return self.side * self.side
"""

from __future__ import annotations

import functools
from typing import Any, Iterable

from rulify.collection import RuleList
from rulify.rule import Assignment, RuleProperty, attach
from rulify.store import Store

_NOT_PLAIN = (RuleProperty, classmethod, staticmethod, property, type)


def rulify(
    obj: Any = None,
    *,
    names: Iterable[str] | None = None,
    eager_names: Iterable[str] = (),
    assignment: Assignment | None = None,
) -> Any:
    """Convert obj into rules and return it. Usable as a class decorator, with or without options."""
    if obj is None:
        return functools.partial(rulify, names=names, eager_names=eager_names, assignment=assignment)
    eager_names = set(eager_names)
    if isinstance(obj, (RuleList, Store)):
        return obj
    if isinstance(obj, (list, tuple)):
        return RuleList(obj)
    if isinstance(obj, dict):
        return Store(obj, assignment=assignment, eager_names=eager_names)
    if isinstance(obj, type):
        return _rulify_class(obj, names, eager_names, assignment)
    raise TypeError(
        f"Cannot rulify a {type(obj).__name__}; expected a class, dict, list or tuple. "
        "For rules on a single object, rulify a dict of its fields into a Store"
    )


def _rulify_class(
    cls: type,
    names: Iterable[str] | None,
    eager_names: set[str],
    assignment: Assignment | None,
) -> type:
    members = vars(cls)
    if names is None:
        names = [name for name, value in members.items() if isinstance(value, property) and value.fset is None]
        if not names:
            names = [
                name
                for name, value in members.items()
                if not name.startswith("_") and not isinstance(value, _NOT_PLAIN)
            ]
    for name in list(names):
        if name not in members:
            raise AttributeError(f"{cls.__name__} has no attribute {name!r} to rulify")
        value = members[name]
        if isinstance(value, property):
            value = value.fget
        attach(cls, name, value, assignment=assignment, eager=name in eager_names)
    return cls
