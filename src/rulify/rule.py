"""Rules on containers — attach slots to classes, Stores and RuleLists.

A rule declared on a class is a data descriptor. Each instance gets its own
slot for it, created on first read or write and stored in the instance's
__dict__. Reading the attribute reads the slot; assigning writes it (through
the rule's assignment hook, if any); deleting it forces recomputation.

Usage:
    class Rect:
        width = rule(7)
        length = rule(5)

        @rule
        def area(self):
            return self.width * self.length

    r = Rect()
    r.area        # 35
    r.length = 6
    r.area        # 42, recomputed once
"""

from __future__ import annotations

from typing import Any, Callable

from rulify.collection import RuleList
from rulify.eager import EagerSlot
from rulify.slot import EMPTY, Slot

Assignment = Callable[[Any, str, Any], Any]

# Per-instance slot table, in instance.__dict__: name -> (RuleProperty, Slot).
_TABLE = "__rules__"
# Rules attached to a single Store instance, in its __dict__: name -> RuleProperty.
_OWN = "_own_rules"


class RuleProperty:
    """A rule declared on a class: a formula or an initial value, plus options."""

    def __init__(
        self,
        formula_or_init: Any = EMPTY,
        *,
        assignment: Assignment | None = None,
        eager: bool = False,
    ) -> None:
        self.formula: Callable[[Any], Any] | None = None
        self.init: Any = EMPTY
        if callable(formula_or_init):
            self.formula = formula_or_init
            self.__doc__ = getattr(formula_or_init, "__doc__", None)
        else:
            self.init = formula_or_init
        self.assignment = assignment
        self.eager = eager
        self.name: str | None = getattr(formula_or_init, "__name__", None) if self.formula else None

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __call__(self, formula: Callable[[Any], Any]) -> RuleProperty:
        """Take the formula after options were given: @rule(eager=True)."""
        if self.formula is not None or self.init is not EMPTY:
            raise TypeError(f"Rule {self.name!r} already has a formula or initial value")
        self.formula = formula
        self.__doc__ = getattr(formula, "__doc__", None)
        self.name = getattr(formula, "__name__", None)
        return self

    # --- Per-instance slots ---

    def slot(self, instance: Any) -> Slot:
        """This rule's slot on instance, created on first use."""
        table = instance.__dict__.setdefault(_TABLE, {})
        entry = table.get(self.name)
        if entry is not None:
            if entry[0] is self:
                return entry[1]
            # The rule was re-attached since this slot was made.
            entry[1].dispose()
        cls = EagerSlot if self.eager else Slot
        slot = cls(instance, self.name, self.formula, self.init)
        table[self.name] = (self, slot)
        return slot

    def release(self, instance: Any) -> None:
        """Dispose of instance's slot for this rule. A later access makes a fresh one."""
        entry = instance.__dict__.get(_TABLE, {}).pop(self.name, None)
        if entry is not None:
            entry[1].dispose()

    # --- Descriptor protocol ---

    def __get__(self, instance: Any, owner: type | None = None) -> Any:
        if instance is None:
            return self
        return self.slot(instance).get()

    def __set__(self, instance: Any, value: Any) -> None:
        if value is not EMPTY and self.assignment is not None:
            value = self.assignment(value, self.name, instance)
        self.slot(instance).set(value)

    def __delete__(self, instance: Any) -> None:
        self.slot(instance).set(EMPTY)

    def __repr__(self) -> str:
        kind = "eager rule" if self.eager else "rule"
        return f"<{kind} {self.name}>"


def rule(
    formula_or_init: Any = EMPTY,
    *,
    assignment: Assignment | None = None,
    eager: bool = False,
) -> RuleProperty:
    """Declare a rule on a class.

    Usage:
        class Order:
            quantity = rule(1)
            price = rule(assignment=lambda value, key, order: round(value, 2))

            @rule
            def total(self):
                return self.quantity * self.price

            @rule(eager=True)
            def summary(self):
                return f"{self.quantity} x {self.price}"
    """
    return RuleProperty(formula_or_init, assignment=assignment, eager=eager)


def _is_store(container: Any) -> bool:
    return not isinstance(container, type) and _OWN in getattr(container, "__dict__", {})


def _rule_of(container: Any, key: str) -> RuleProperty:
    if _is_store(container):
        prop = container.__dict__[_OWN].get(key)
        if prop is not None:
            return prop
    prop = getattr(type(container), key, None) if isinstance(key, str) else None
    if not isinstance(prop, RuleProperty):
        raise KeyError(f"{type(container).__name__} has no rule {key!r}")
    return prop


def attach(
    container: Any,
    key: str,
    formula_or_init: Any = EMPTY,
    *,
    assignment: Assignment | None = None,
    eager: bool = False,
) -> Any:
    """Install a rule at key on a class (all its instances) or on a Store.

    Callables are formulas and receive the container; anything else is an
    initial value. Returns container.
    """
    prop = RuleProperty(formula_or_init, assignment=assignment, eager=eager)
    if isinstance(container, type):
        setattr(container, key, prop)
        prop.__set_name__(container, key)
    elif _is_store(container):
        own = container.__dict__[_OWN]
        if isinstance(key, str) and key not in own and hasattr(type(container), key):
            # Attribute lookup would find the class member, never the rule.
            raise ValueError(
                f"Cannot use {key!r} as a rule name: {type(container).__name__}.{key} already exists"
            )
        old = own.get(key)
        if old is not None:
            old.release(container)
        prop.__set_name__(type(container), key)
        own[key] = prop
    else:
        raise TypeError(
            f"Cannot attach rule {key!r} to a {type(container).__name__} instance; "
            "attach it to the class for every instance, or use a Store "
            "(Store(...) or rulify(dict)) for rules on a single object"
        )
    return container


def get_slot(container: Any, key: Any) -> Slot:
    """The slot behind key. Creates it if it was never accessed."""
    if isinstance(container, RuleList):
        return container.slot(key)
    return _rule_of(container, key).slot(container)


def read(container: Any, key: Any) -> Any:
    """Current value at key; a Future while it is pending."""
    if isinstance(container, RuleList):
        return len(container) if key == "length" else container[key]
    return get_slot(container, key).get()


def write(container: Any, key: Any, value: Any) -> None:
    """Store value at key, applying the rule's assignment hook, and reset dependents."""
    if isinstance(container, RuleList):
        container.slot(key).set(value)
        return
    _rule_of(container, key).__set__(container, value)


def reset(container: Any, key: Any) -> None:
    """Force key to recompute on its next read."""
    get_slot(container, key).reset()


def requires(container: Any, key: Any) -> tuple[Slot, ...]:
    """The slots key read during its last computation."""
    return get_slot(container, key).requires


def free(container: Any, key: Any = None) -> None:
    """Dispose of the slot at key, or of every slot of container.

    Dependents are reset. A later access re-creates a fresh slot.
    """
    if isinstance(container, RuleList):
        container.release(key)
        return
    if key is not None:
        _rule_of(container, key).release(container)
        return
    table = container.__dict__.get(_TABLE, {})
    for _prop, slot in list(table.values()):
        slot.dispose()
    table.clear()
