"""Record (bank transaction / POS sale) schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator


class RecordCreate(BaseModel):
    """Normalized record as produced by a bank or POS adapter."""

    source: Literal["bank", "pos"]
    external_id: str | None = Field(default=None, max_length=128)
    description: str | None = Field(default=None, max_length=500)
    item_name: str | None = Field(default=None, max_length=500)
    amount: int  # signed, minor units
    currency: str = Field(default="USD", min_length=3, max_length=3)
    supplier_id: str | None = Field(default=None, max_length=64)
    pos_category: str | None = Field(default=None, max_length=255)
    occurred_at: datetime | None = None

    @model_validator(mode="after")
    def _has_label(self):
        if self.source == "bank" and not self.description:
            raise ValueError("Bank records need a description")
        if self.source == "pos" and not self.item_name:
            raise ValueError("POS sales need an item_name")
        return self


class CategoryOverride(BaseModel):
    category_id: str = Field(min_length=1, max_length=64)


class SplitAllocationResponse(BaseModel):
    id: int
    category_id: str
    amount: int
    label: str | None = None
    position: int
    rule_id: int | None = None

    model_config = {"from_attributes": True}


class RecordResponse(BaseModel):
    id: int
    restaurant_id: int
    source: str
    external_id: str | None = None
    description: str | None = None
    item_name: str | None = None
    amount: int
    currency: str
    supplier_id: str | None = None
    pos_category: str | None = None
    occurred_at: datetime
    categorization_state: str
    category_id: str | None = None
    rule_id: int | None = None
    categorized_at: datetime | None = None
    allocations: list[SplitAllocationResponse] = []
    created_at: datetime

    model_config = {"from_attributes": True}
