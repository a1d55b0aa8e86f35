"""Categorizable records (bank transactions and POS sales) and their split allocations."""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from rulebook.models.base import Base, TimestampMixin, utcnow


class Record(Base, TimestampMixin):
    """A normalized bank transaction (``source="bank"``) or POS sale (``source="pos"``).

    ``amount`` is signed and in minor units (cents). Bank records carry a
    ``description``, POS sales an ``item_name``.
    """

    __tablename__ = "records"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    restaurant_id: Mapped[int] = mapped_column(
        ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False
    )
    source: Mapped[str] = mapped_column(String(10), nullable=False)  # bank, pos
    external_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    item_name: Mapped[str | None] = mapped_column(String(500), nullable=True)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    supplier_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    pos_category: Mapped[str | None] = mapped_column(String(255), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    categorization_state: Mapped[str] = mapped_column(String(30), default="uncategorized")
    category_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    # Deleting a rule leaves the records it categorized untouched
    rule_id: Mapped[int | None] = mapped_column(
        ForeignKey("categorization_rules.id", ondelete="SET NULL"), nullable=True
    )
    categorized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_records_backfill", "restaurant_id", "source", "categorization_state", "occurred_at"),
    )


class SplitAllocation(Base, TimestampMixin):
    __tablename__ = "split_allocations"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    record_id: Mapped[int] = mapped_column(
        ForeignKey("records.id", ondelete="CASCADE"), nullable=False, index=True
    )
    category_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)  # absolute, minor units
    label: Mapped[str | None] = mapped_column(String(255), nullable=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    rule_id: Mapped[int | None] = mapped_column(
        ForeignKey("categorization_rules.id", ondelete="SET NULL"), nullable=True
    )
