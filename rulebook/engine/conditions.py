"""Rule conditions.

Each condition kind is a small frozen dataclass with a pure ``matches``
method. ``conditions_for`` turns the nullable condition columns of a rule
into the list of conditions that actually apply; absent columns are
wildcards and produce no condition at all.
"""

from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Protocol, Union

import structlog

from rulebook.engine.vocab import MatchType, Scope, TextField, TransactionType

logger = structlog.get_logger()


@lru_cache(maxsize=512)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a user-supplied regex (case-insensitive). Raises ``re.error``."""
    return re.compile(pattern, re.IGNORECASE)


_TEXT_MATCHERS: dict[str, Callable[[str, str], bool]] = {
    MatchType.EXACT: lambda text, value: text == value,
    MatchType.CONTAINS: lambda text, value: value in text,
    MatchType.STARTS_WITH: lambda text, value: text.startswith(value),
    MatchType.ENDS_WITH: lambda text, value: text.endswith(value),
}


@dataclass(frozen=True)
class TextPatternCondition:
    field: str
    value: str
    match_type: str = MatchType.CONTAINS
    rule_id: Any = dataclasses.field(default=None, compare=False)

    kind = "text_pattern"

    def matches(self, record) -> bool:
        text = getattr(record, self.field, None) or ""

        if self.match_type == MatchType.REGEX:
            try:
                regex = compile_pattern(self.value)
            except re.error as e:
                logger.error(
                    "invalid_rule_regex",
                    rule_id=self.rule_id,
                    pattern=self.value,
                    error=str(e),
                )
                return False
            return regex.search(text) is not None

        matcher = _TEXT_MATCHERS.get(self.match_type)
        if matcher is None:
            return False
        return matcher(text.lower(), self.value.lower())


@dataclass(frozen=True)
class AmountRangeCondition:
    minimum: int | None = None
    maximum: int | None = None

    kind = "amount_range"

    def matches(self, record) -> bool:
        amount = abs(record.amount or 0)
        if self.minimum is not None and amount < self.minimum:
            return False
        if self.maximum is not None and amount > self.maximum:
            return False
        return True


@dataclass(frozen=True)
class SupplierCondition:
    supplier_id: str

    kind = "supplier"

    def matches(self, record) -> bool:
        supplier_id = getattr(record, "supplier_id", None)
        return supplier_id is not None and str(supplier_id) == str(self.supplier_id)


@dataclass(frozen=True)
class TransactionTypeCondition:
    transaction_type: str

    kind = "transaction_type"

    def matches(self, record) -> bool:
        if self.transaction_type == TransactionType.ANY:
            return True
        amount = record.amount or 0
        if self.transaction_type == TransactionType.DEBIT:
            return amount < 0
        if self.transaction_type == TransactionType.CREDIT:
            return amount > 0
        return False


@dataclass(frozen=True)
class PosCategoryCondition:
    pos_category: str

    kind = "pos_category"

    def matches(self, record) -> bool:
        value = getattr(record, "pos_category", None) or ""
        return value.lower() == self.pos_category.lower()


Condition = Union[
    TextPatternCondition,
    AmountRangeCondition,
    SupplierCondition,
    TransactionTypeCondition,
    PosCategoryCondition,
]


class RuleConditions(Protocol):
    """Attributes read from a rule (ORM row or rule definition schema)."""

    scope: str
    text_field: str | None
    text_pattern: str | None
    text_match_type: str | None
    amount_min: int | None
    amount_max: int | None
    supplier_id: str | None
    transaction_type: str | None
    pos_category: str | None


def default_text_field(scope: str | None) -> str:
    return TextField.ITEM_NAME if scope == Scope.POS else TextField.DESCRIPTION


def evaluate(condition: Condition, record) -> bool:
    """Evaluate a single condition against a record."""
    return condition.matches(record)


def conditions_for(rule: RuleConditions) -> list[Condition]:
    """Build the conditions a rule specifies, skipping absent ones."""
    rule_id = getattr(rule, "id", None)
    conditions: list[Condition] = []

    if rule.text_pattern:
        conditions.append(
            TextPatternCondition(
                field=rule.text_field or default_text_field(rule.scope),
                value=rule.text_pattern,
                match_type=rule.text_match_type or MatchType.CONTAINS,
                rule_id=rule_id,
            )
        )
    if rule.amount_min is not None or rule.amount_max is not None:
        conditions.append(AmountRangeCondition(rule.amount_min, rule.amount_max))
    if rule.supplier_id:
        conditions.append(SupplierCondition(rule.supplier_id))
    if rule.transaction_type:
        conditions.append(TransactionTypeCondition(rule.transaction_type))
    if rule.pos_category:
        conditions.append(PosCategoryCondition(rule.pos_category))

    return conditions
