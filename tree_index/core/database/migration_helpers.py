"""Migration helpers for adding a nested-set index to an existing table.

Alembic autogenerate picks up the columns declared by ``NestedSetMixin``
on new tables. These helpers cover the common case of retrofitting an
existing table, where the columns need server defaults so current rows
start out unplaced at ``(0, 0)``.

Example:
    >>> from tree_index.core.database.migration_helpers import (
    ...     add_tree_columns,
    ...     drop_tree_columns,
    ... )
    >>>
    >>> def upgrade() -> None:
    ...     add_tree_columns("categories")
    ...     # Intervals are filled in afterwards, from application code:
    ...     #     await TreeEngine(Category).rebuild(session)
    >>>
    >>> def downgrade() -> None:
    ...     drop_tree_columns("categories")
"""

from __future__ import annotations

import sqlalchemy as sa


def tree_index_names(table: str) -> tuple[str, str]:
    """Index names for ``lft`` and ``rgt``.

    Matches the ``ix_%(column_0_label)s`` naming convention on ``Base``
    so autogenerate sees no difference after a retrofit.

    Example:
        >>> tree_index_names("categories")
        ('ix_categories_lft', 'ix_categories_rgt')
    """
    return f"ix_{table}_lft", f"ix_{table}_rgt"


def add_tree_columns(table: str, *, schema: str | None = None, create_indexes: bool = True) -> None:
    """Add ``lft``, ``rgt`` and ``is_group`` to an existing table.

    Args:
        table: Table name
        schema: Optional schema name
        create_indexes: Also create the ``lft`` and ``rgt`` indexes
    """
    from alembic import op

    op.add_column(
        table,
        sa.Column("lft", sa.Integer(), nullable=False, server_default=sa.text("0")),
        schema=schema,
    )
    op.add_column(
        table,
        sa.Column("rgt", sa.Integer(), nullable=False, server_default=sa.text("0")),
        schema=schema,
    )
    op.add_column(
        table,
        sa.Column("is_group", sa.Boolean(), nullable=False, server_default=sa.false()),
        schema=schema,
    )

    if create_indexes:
        lft_index, rgt_index = tree_index_names(table)
        op.create_index(lft_index, table, ["lft"], schema=schema)
        op.create_index(rgt_index, table, ["rgt"], schema=schema)


def drop_tree_columns(table: str, *, schema: str | None = None, drop_indexes: bool = True) -> None:
    """Drop the nested-set columns and their indexes.

    Args:
        table: Table name
        schema: Optional schema name
        drop_indexes: Drop the ``lft`` and ``rgt`` indexes first
    """
    from alembic import op

    if drop_indexes:
        lft_index, rgt_index = tree_index_names(table)
        op.drop_index(rgt_index, table_name=table, schema=schema)
        op.drop_index(lft_index, table_name=table, schema=schema)

    op.drop_column(table, "is_group", schema=schema)
    op.drop_column(table, "rgt", schema=schema)
    op.drop_column(table, "lft", schema=schema)


__all__ = [
    "add_tree_columns",
    "drop_tree_columns",
    "tree_index_names",
]
