"""Add records and split_allocations tables.

Revision ID: 003
Revises: 002
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa

revision = "003"
down_revision = "002"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("restaurant_id", sa.Integer(), sa.ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("source", sa.String(10), nullable=False),
        sa.Column("external_id", sa.String(128), nullable=True),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("item_name", sa.String(500), nullable=True),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("currency", sa.String(3), server_default="USD", nullable=False),
        sa.Column("supplier_id", sa.String(64), nullable=True),
        sa.Column("pos_category", sa.String(255), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("categorization_state", sa.String(30), server_default="uncategorized", nullable=False),
        sa.Column("category_id", sa.String(64), nullable=True),
        sa.Column(
            "rule_id",
            sa.Integer(),
            sa.ForeignKey("categorization_rules.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("categorized_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("source IN ('bank', 'pos')", name="ck_records_source"),
        sa.CheckConstraint(
            "categorization_state IN ('uncategorized', 'categorized', 'split', 'manually_overridden')",
            name="ck_records_state",
        ),
    )
    op.create_index(
        "idx_records_backfill",
        "records",
        ["restaurant_id", "source", "categorization_state", "occurred_at"],
    )

    op.create_table(
        "split_allocations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("record_id", sa.Integer(), sa.ForeignKey("records.id", ondelete="CASCADE"), nullable=False),
        sa.Column("category_id", sa.String(64), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("label", sa.String(255), nullable=True),
        sa.Column("position", sa.Integer(), server_default="0", nullable=False),
        sa.Column(
            "rule_id",
            sa.Integer(),
            sa.ForeignKey("categorization_rules.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("amount >= 0", name="ck_split_allocations_amount"),
    )
    op.create_index("ix_split_allocations_record_id", "split_allocations", ["record_id"])


def downgrade() -> None:
    op.drop_index("ix_split_allocations_record_id", table_name="split_allocations")
    op.drop_table("split_allocations")
    op.drop_index("idx_records_backfill", table_name="records")
    op.drop_table("records")
