"""Create category_corrections table for learning rules from user corrections.

Revision ID: 002
Revises: 001
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "category_corrections",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("description", sa.String(500), nullable=False),
        sa.Column(
            "original_category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "corrected_category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("original_source", sa.String(20), nullable=True),
        sa.Column(
            "created_rule_id",
            sa.Integer(),
            sa.ForeignKey("category_rules.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index(
        "idx_category_corrections_pending",
        "category_corrections",
        ["created_rule_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_category_corrections_pending")
    op.drop_table("category_corrections")
