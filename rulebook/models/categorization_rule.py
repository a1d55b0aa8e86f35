"""Categorization rule model."""

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from rulebook.models.base import Base, JSONType, TimestampMixin


class CategorizationRule(Base, TimestampMixin):
    """A stored pattern that categorizes (or splits) bank transactions and POS sales.

    Every non-null condition column must hold for a record to match. The
    target is either ``category_id`` or an ordered list of ``split_specs``
    (``{category_id, percentage | fixed_amount, label}`` dicts), never both.
    """

    __tablename__ = "categorization_rules"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    restaurant_id: Mapped[int] = mapped_column(
        ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    scope: Mapped[str] = mapped_column(String(10), nullable=False)  # bank, pos, both
    priority: Mapped[int] = mapped_column(Integer, default=0)  # higher wins
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    auto_apply: Mapped[bool] = mapped_column(Boolean, default=False)

    # Conditions
    text_field: Mapped[str | None] = mapped_column(String(20), nullable=True)  # description, item_name
    text_pattern: Mapped[str | None] = mapped_column(String(500), nullable=True)
    text_match_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    amount_min: Mapped[int | None] = mapped_column(BigInteger, nullable=True)  # minor units, abs(amount)
    amount_max: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    supplier_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    transaction_type: Mapped[str | None] = mapped_column(String(10), nullable=True)  # debit, credit, any
    pos_category: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Target
    category_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    split_specs: Mapped[list[dict] | None] = mapped_column(JSONType, nullable=True)

    # Statistics
    apply_count: Mapped[int] = mapped_column(Integer, default=0)
    last_applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_by: Mapped[str] = mapped_column(String(20), default="manual")  # manual, ai

    __table_args__ = (
        Index("idx_categorization_rules_lookup", "restaurant_id", "is_active", "auto_apply"),
        Index("idx_categorization_rules_scope", "restaurant_id", "scope"),
    )

    @property
    def is_split_rule(self) -> bool:
        return bool(self.split_specs)

    def __repr__(self) -> str:
        return f"<CategorizationRule(id={self.id}, name={self.name!r}, priority={self.priority})>"
