"""Categorization rule schemas."""

import re
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from rulebook.config import settings
from rulebook.engine.conditions import compile_pattern, default_text_field

ScopeName = Literal["bank", "pos", "both"]
MatchTypeName = Literal["exact", "contains", "starts_with", "ends_with", "regex"]
TextFieldName = Literal["description", "item_name"]
TransactionTypeName = Literal["debit", "credit", "any"]


class SplitSpec(BaseModel):
    category_id: str = Field(min_length=1, max_length=64)
    percentage: Decimal | None = Field(default=None, gt=0, le=100)
    fixed_amount: int | None = Field(default=None, gt=0)  # minor units
    label: str | None = None

    @model_validator(mode="after")
    def _one_amount_kind(self):
        if (self.percentage is None) == (self.fixed_amount is None):
            raise ValueError("Each split needs exactly one of percentage or fixed_amount")
        return self


class RuleCreate(BaseModel):
    """A complete rule definition.

    Also used to re-validate the merged result of a PATCH.
    """

    name: str = Field(min_length=1, max_length=255)
    scope: ScopeName
    priority: int = 0
    is_active: bool = True
    auto_apply: bool = False

    text_pattern: str | None = Field(default=None, max_length=500)
    text_field: TextFieldName | None = None
    text_match_type: MatchTypeName | None = None
    amount_min: int | None = Field(default=None, ge=0)
    amount_max: int | None = Field(default=None, ge=0)
    supplier_id: str | None = Field(default=None, max_length=64)
    transaction_type: TransactionTypeName | None = None
    pos_category: str | None = Field(default=None, max_length=255)

    category_id: str | None = Field(default=None, max_length=64)
    split_specs: list[SplitSpec] | None = None

    @field_validator("text_pattern", "supplier_id", "pos_category", "category_id")
    @classmethod
    def _blank_to_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @model_validator(mode="after")
    def _check_definition(self):
        if (self.category_id is None) == (not self.split_specs):
            raise ValueError("A rule targets exactly one of category_id or split_specs")

        if self.split_specs:
            if len(self.split_specs) < 2:
                raise ValueError("A split rule needs at least 2 splits")
            uses_percentage = [s.percentage is not None for s in self.split_specs]
            if any(uses_percentage) and not all(uses_percentage):
                raise ValueError("Cannot mix percentage and fixed-amount splits in one rule")
            if all(uses_percentage):
                total = sum(s.percentage for s in self.split_specs)
                if abs(total - Decimal(100)) > Decimal("0.01"):
                    raise ValueError(f"Split percentages must sum to 100, got {total}")

        if (
            self.amount_min is not None
            and self.amount_max is not None
            and self.amount_min > self.amount_max
        ):
            raise ValueError("amount_min cannot be greater than amount_max")

        if self.text_pattern is None:
            self.text_field = None
            self.text_match_type = None
        else:
            self.text_field = self.text_field or default_text_field(self.scope)
            self.text_match_type = self.text_match_type or "contains"
            if self.text_match_type == "regex":
                try:
                    compile_pattern(self.text_pattern)
                except re.error as e:
                    raise ValueError(f"Invalid regular expression: {e}") from e

        return self


class RuleUpdate(BaseModel):
    name: str | None = None
    scope: ScopeName | None = None
    priority: int | None = None
    is_active: bool | None = None
    auto_apply: bool | None = None
    text_pattern: str | None = None
    text_field: TextFieldName | None = None
    text_match_type: MatchTypeName | None = None
    amount_min: int | None = None
    amount_max: int | None = None
    supplier_id: str | None = None
    transaction_type: TransactionTypeName | None = None
    pos_category: str | None = None
    category_id: str | None = None
    split_specs: list[SplitSpec] | None = None


class RuleResponse(BaseModel):
    id: int
    restaurant_id: int
    name: str
    scope: str
    priority: int
    is_active: bool
    auto_apply: bool
    text_pattern: str | None
    text_field: str | None
    text_match_type: str | None
    amount_min: int | None
    amount_max: int | None
    supplier_id: str | None
    transaction_type: str | None
    pos_category: str | None
    category_id: str | None
    split_specs: list[SplitSpec] | None
    apply_count: int
    last_applied_at: datetime | None
    created_by: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ToggleRequest(BaseModel):
    enabled: bool


class GuardViolationResponse(BaseModel):
    code: str
    reason: str
    offending_value: str | None = None


class GuardReport(BaseModel):
    valid: bool
    violations: list[GuardViolationResponse]


class BulkApplyRequest(BaseModel):
    scope: ScopeName = "both"
    batch_limit: int = Field(
        default=settings.bulk_apply_default_batch_limit,
        ge=1,
        le=settings.bulk_apply_max_batch_limit,
    )


class BulkApplySummary(BaseModel):
    scope: Literal["bank", "pos"]
    applied_count: int
    total_considered: int
    failed_count: int = 0
    scanned_count: int = 0


class BulkApplyResult(BaseModel):
    summaries: list[BulkApplySummary]
    applied_count: int
    total_considered: int
