"""Pure categorization engine: no database, no HTTP."""

from rulebook.engine.conditions import conditions_for, evaluate
from rulebook.engine.guard import GuardViolation, RuleGuard
from rulebook.engine.matcher import matches
from rulebook.engine.resolver import resolve
from rulebook.engine.splits import SplitAmount, convert_splits

__all__ = [
    "GuardViolation",
    "RuleGuard",
    "SplitAmount",
    "conditions_for",
    "convert_splits",
    "evaluate",
    "matches",
    "resolve",
]
