# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2026 dagclosure Contributors

"""Nodes and their scoped closure table.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: tuple[str, ...] | None = None
depends_on: tuple[str, ...] | None = None

_LESS = '"ancestor_id" < "descendant_id"'


def _timestamps() -> list[sa.Column]:  # type: ignore[type-arg]
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "nodes",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_nodes"),
    )

    op.create_table(
        "node_links",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("ancestor_id", sa.Uuid(), nullable=False),
        sa.Column("descendant_id", sa.Uuid(), nullable=False),
        sa.Column("scope_id", sa.Uuid(), nullable=False),
        sa.Column("direct", sa.Boolean(), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_node_links"),
        sa.ForeignKeyConstraint(
            ["ancestor_id"],
            ["nodes.id"],
            name="fk_node_links_ancestor_id_nodes",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["descendant_id"],
            ["nodes.id"],
            name="fk_node_links_descendant_id_nodes",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint(
            "ancestor_id",
            "descendant_id",
            "scope_id",
            name="uq_node_links_ancestor_id",
        ),
        sa.CheckConstraint(
            '"ancestor_id" <> "descendant_id"', name="ck_node_links_no_self_loop"
        ),
        sa.CheckConstraint('"count" >= 0', name="ck_node_links_count_non_negative"),
        sa.CheckConstraint(
            '"direct" OR "count" >= 1', name="ck_node_links_direct_or_counted"
        ),
    )
    op.create_index("idx_node_links_ancestor", "node_links", ["ancestor_id"])
    op.create_index("idx_node_links_descendant", "node_links", ["descendant_id"])
    op.create_index("idx_node_links_scope", "node_links", ["scope_id"])
    op.create_index(
        "uq_node_links_pair",
        "node_links",
        [
            sa.text(f'(CASE WHEN {_LESS} THEN "ancestor_id" ELSE "descendant_id" END)'),
            sa.text(f'(CASE WHEN {_LESS} THEN "descendant_id" ELSE "ancestor_id" END)'),
            "scope_id",
        ],
        unique=True,
    )


def downgrade() -> None:
    op.drop_index("uq_node_links_pair", table_name="node_links")
    op.drop_index("idx_node_links_scope", table_name="node_links")
    op.drop_index("idx_node_links_descendant", table_name="node_links")
    op.drop_index("idx_node_links_ancestor", table_name="node_links")
    op.drop_table("node_links")
    op.drop_table("nodes")
