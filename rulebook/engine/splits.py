"""Conversion of split specs into absolute allocation amounts."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from rulebook.core.exceptions import SplitConversionError


@dataclass(frozen=True)
class SplitAmount:
    category_id: str
    amount: int
    label: str | None = None


def _percentage_of(total: int, percentage) -> int:
    share = Decimal(total) * Decimal(str(percentage)) / Decimal(100)
    return int(share.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def convert_splits(specs: Sequence[Mapping], total: int) -> list[SplitAmount]:
    """Turn percentage / fixed-amount specs into amounts that sum to ``total``.

    ``total`` is the record's absolute amount in minor units. Every spec but
    the last gets its own amount (percentages rounded half-up to the minor
    unit, fixed amounts as-is); the last spec absorbs the remainder so the
    allocations always add up exactly.

    Raises SplitConversionError when a non-last fixed amount exceeds the
    total or when the remainder left for the last spec is negative.
    """
    if total < 0:
        raise SplitConversionError("Split total must be an absolute amount", total)
    if not specs:
        raise SplitConversionError("Split rule has no split specs", total)

    amounts: list[int] = []
    for spec in specs[:-1]:
        if spec.get("percentage") is not None:
            amount = _percentage_of(total, spec["percentage"])
        elif spec.get("fixed_amount") is not None:
            amount = int(spec["fixed_amount"])
            if amount > total:
                raise SplitConversionError(
                    f"Fixed split amount {amount} exceeds total {total}", total, amounts + [amount]
                )
        else:
            raise SplitConversionError("Split spec has neither percentage nor fixed amount", total)
        amounts.append(amount)

    remainder = total - sum(amounts)
    if remainder < 0:
        raise SplitConversionError(
            f"Split amounts {amounts} leave a negative remainder against total {total}",
            total,
            amounts + [remainder],
        )
    amounts.append(remainder)

    return [
        SplitAmount(category_id=str(spec["category_id"]), amount=amount, label=spec.get("label"))
        for spec, amount in zip(specs, amounts)
    ]
