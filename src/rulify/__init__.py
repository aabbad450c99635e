"""Rulify: memoized rules with automatic dependency tracking for Python."""

from importlib.metadata import version as _version

__version__ = _version("rulify")

from rulify._tracking import flush, get_pending_count, resume, set_tick
from rulify.errors import RuleError, CycleError, NoValueError
from rulify.slot import EMPTY, Slot, add_dependency, set_scheduler
from rulify.promise import as_future, is_pending
from rulify.eager import EagerSlot
from rulify.collection import RuleList, ElementSlot, LengthSlot
from rulify.rule import RuleProperty, rule, attach, read, write, reset, get_slot, requires, free
from rulify.store import Store
from rulify.convert import rulify
# textual is opt-in, not imported here

__all__ = [
    "EMPTY",
    "Slot",
    "EagerSlot",
    "RuleList",
    "ElementSlot",
    "LengthSlot",
    "RuleProperty",
    "rule",
    "attach",
    "read",
    "write",
    "reset",
    "get_slot",
    "requires",
    "free",
    "rulify",
    "Store",
    "add_dependency",
    "as_future",
    "is_pending",
    "flush",
    "get_pending_count",
    "resume",
    "set_tick",
    "set_scheduler",
    "RuleError",
    "CycleError",
    "NoValueError",
]
