"""store nodes

Revision ID: 0001_store_nodes
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_store_nodes"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "store_nodes",
        sa.Column("path", sa.String(), primary_key=True),
        sa.Column("value", sa.JSON(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    # Subtree reads are prefix scans on path; text_pattern_ops keeps LIKE 'x/%' indexable.
    op.create_index(
        "ix_store_nodes_path_prefix",
        "store_nodes",
        ["path"],
        postgresql_ops={"path": "text_pattern_ops"},
    )


def downgrade() -> None:
    op.drop_index("ix_store_nodes_path_prefix", table_name="store_nodes")
    op.drop_table("store_nodes")
