"""Declarative base for models that carry a nested-set index.

Models compose the base with a primary key strategy and
``NestedSetMixin``:

    class Department(Base, IntegerPKMixin, NestedSetMixin):
        __tablename__ = "departments"
        parent_id: Mapped[int | None] = mapped_column(index=True)

String-keyed trees declare their own ``id`` column instead of using
``IntegerPKMixin``.
"""

from __future__ import annotations

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column

# The "ix" entry must stay in sync with migration_helpers.tree_index_names(),
# otherwise autogenerate reports the retrofitted lft/rgt indexes as renamed.
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base for tree-indexed tables.

    Table names default to the lowercased class name.
    """

    metadata = MetaData(naming_convention=NAMING_CONVENTION)

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return cls.__name__.lower()


class IntegerPKMixin:
    """Auto-increment ``id`` usable as the tree id column."""

    __allow_unmapped__ = True

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)


__all__ = [
    "NAMING_CONVENTION",
    "Base",
    "IntegerPKMixin",
]
