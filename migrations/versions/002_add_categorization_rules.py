"""Add categorization_rules table.

Pattern rules for bank transactions and POS sales, targeting one category
or an ordered list of split specs.

Revision ID: 002
Revises: 001
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "categorization_rules",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("restaurant_id", sa.Integer(), sa.ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("scope", sa.String(10), nullable=False),
        sa.Column("priority", sa.Integer(), server_default="0", nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("auto_apply", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("text_field", sa.String(20), nullable=True),
        sa.Column("text_pattern", sa.String(500), nullable=True),
        sa.Column("text_match_type", sa.String(20), nullable=True),
        sa.Column("amount_min", sa.BigInteger(), nullable=True),
        sa.Column("amount_max", sa.BigInteger(), nullable=True),
        sa.Column("supplier_id", sa.String(64), nullable=True),
        sa.Column("transaction_type", sa.String(10), nullable=True),
        sa.Column("pos_category", sa.String(255), nullable=True),
        sa.Column("category_id", sa.String(64), nullable=True),
        sa.Column("split_specs", JSONB(), nullable=True),
        sa.Column("apply_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_applied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(20), server_default="manual", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("scope IN ('bank', 'pos', 'both')", name="ck_categorization_rules_scope"),
        sa.CheckConstraint(
            "(category_id IS NOT NULL AND split_specs IS NULL) OR "
            "(category_id IS NULL AND split_specs IS NOT NULL)",
            name="ck_categorization_rules_target",
        ),
        sa.CheckConstraint(
            "text_pattern IS NOT NULL OR amount_min IS NOT NULL OR amount_max IS NOT NULL "
            "OR supplier_id IS NOT NULL OR transaction_type IS NOT NULL OR pos_category IS NOT NULL",
            name="ck_categorization_rules_has_condition",
        ),
    )
    op.create_index(
        "idx_categorization_rules_lookup",
        "categorization_rules",
        ["restaurant_id", "is_active", "auto_apply"],
    )
    op.create_index("idx_categorization_rules_scope", "categorization_rules", ["restaurant_id", "scope"])


def downgrade() -> None:
    op.drop_index("idx_categorization_rules_scope", table_name="categorization_rules")
    op.drop_index("idx_categorization_rules_lookup", table_name="categorization_rules")
    op.drop_table("categorization_rules")
