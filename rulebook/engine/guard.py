"""Safety guard: blocks rule definitions broad enough to mass-miscategorize.

The same checks back both the advisory endpoint (every violation reported
before the user commits) and rule creation/update (first violation fails
the request).
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from rulebook.engine.vocab import TransactionType

_TOKEN_RE = re.compile(r"[a-z0-9]+")


@dataclass(frozen=True)
class GuardViolation:
    code: str
    reason: str
    offending_value: str | None = None


class RuleGuard:
    def __init__(self, generic_terms: Iterable[str], min_pattern_length: int = 3):
        self.generic_terms = frozenset(t.strip().lower() for t in generic_terms if t.strip())
        self.min_pattern_length = min_pattern_length

    def is_generic(self, value: str) -> bool:
        """A pattern is generic when it is a blocked term or the start of one
        (``"withdraw"``), or when every word in it is a blocked term
        (``"ACH DEBIT"``). Fragments from inside a term (``"line"``) pass."""
        normalized = value.strip().lower()
        if not normalized:
            return False
        if any(term.startswith(normalized) for term in self.generic_terms):
            return True
        tokens = _TOKEN_RE.findall(normalized)
        return bool(tokens) and all(token in self.generic_terms for token in tokens)

    def check(self, rule) -> list[GuardViolation]:
        """Return every violation for a rule definition (empty list = acceptable)."""
        violations: list[GuardViolation] = []

        pattern = (rule.text_pattern or "").strip()
        has_supplier = bool(rule.supplier_id)
        has_amount_range = rule.amount_min is not None or rule.amount_max is not None
        has_pos_category = bool(rule.pos_category)
        has_direction = rule.transaction_type not in (None, TransactionType.ANY)

        if not (pattern or has_supplier or has_amount_range or has_pos_category or has_direction):
            violations.append(
                GuardViolation(
                    code="no_conditions",
                    reason="A rule needs at least one condition; this one would match every record.",
                )
            )
            return violations

        if pattern and len(pattern) < self.min_pattern_length and not has_supplier:
            violations.append(
                GuardViolation(
                    code="pattern_too_short",
                    reason=(
                        f"Pattern is shorter than {self.min_pattern_length} characters; "
                        "add a supplier to narrow it down."
                    ),
                    offending_value=pattern,
                )
            )

        qualified = has_supplier or has_amount_range or has_pos_category
        if pattern and not qualified and self.is_generic(pattern):
            violations.append(
                GuardViolation(
                    code="generic_pattern",
                    reason=(
                        f"'{pattern}' is too generic to use alone; "
                        "add a supplier or an amount range."
                    ),
                    offending_value=pattern,
                )
            )

        return violations
