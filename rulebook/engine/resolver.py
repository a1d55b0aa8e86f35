"""Pick the single winning rule for a record."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

from rulebook.engine.matcher import matches
from rulebook.engine.vocab import scope_accepts

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _as_aware(value: datetime | None) -> datetime:
    if value is None:
        return _EPOCH
    if value.tzinfo is None:
        # SQLite hands back naive datetimes for timezone-aware columns
        return value.replace(tzinfo=timezone.utc)
    return value


def precedence_key(rule) -> tuple:
    """Sort key: highest priority first, then earliest created, then lowest id."""
    return (-(rule.priority or 0), _as_aware(rule.created_at), rule.id or 0)


def eligible(rule, source: str) -> bool:
    return bool(rule.is_active) and scope_accepts(rule.scope, source)


def candidates(record, rules: Iterable) -> list:
    """Active, scope-compatible rules matching ``record``, best first."""
    found = [rule for rule in rules if eligible(rule, record.source) and matches(rule, record)]
    return sorted(found, key=precedence_key)


def resolve(record, rules: Iterable):
    """Return the winning rule for ``record`` or ``None`` when nothing matches.

    Pure read over the given rule snapshot: no I/O, no mutation.
    """
    ranked = candidates(record, rules)
    return ranked[0] if ranked else None
