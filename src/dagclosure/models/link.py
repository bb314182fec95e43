# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2026 dagclosure Contributors

"""Declarative mixins for closure-table link classes.

A link class mixes in ``DagLinkMixin`` (or ``ScopedDagLinkMixin``) and names
its node class through an immutable ``LinkOptions``::

    class CategoryLink(DagLinkMixin, Base):
        __tablename__ = "category_links"
        __dag_options__ = LinkOptions(node_class=Category)

Every row bridges two nodes. ``direct`` marks an edge a client added;
``count`` is the number of distinct paths of length two or more between the
same nodes. A row exists while ``direct or count >= 1``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ColumnElement,
    ForeignKey,
    Index,
    Integer,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    declared_attr,
    mapped_column,
    relationship,
    validates,
)
from sqlalchemy.orm.base import NO_VALUE

from dagclosure.exceptions import ConfigurationError, ProtectedFieldViolation
from dagclosure.models.base import TimestampMixin, UUIDMixin


@dataclass(frozen=True)
class LinkOptions:
    """Column mapping and node binding for one link type."""

    node_class: type[Any] | None = None
    ancestor_id_column: str = "ancestor_id"
    descendant_id_column: str = "descendant_id"
    direct_column: str = "direct"
    count_column: str = "count"
    scope_column: str = "scope_id"

    def node_primary_key(self) -> Any:
        """Return the node table's primary key column, validating the binding."""
        if self.node_class is None:
            raise ConfigurationError(
                "Non-polymorphic graphs need to specify node_class with the "
                "receiving node class"
            )
        mapper = sa_inspect(self.node_class, raiseerr=False)
        if mapper is None or not hasattr(mapper, "primary_key"):
            raise ConfigurationError(
                f"node_class {self.node_class!r} is not a mapped class"
            )
        if len(mapper.primary_key) != 1:
            raise ConfigurationError(
                f"node_class {self.node_class.__name__} must have a single-column primary key"
            )
        return mapper.primary_key[0]


# Python attribute backing each trackable field.
_TRACKED_ATTRIBUTES = {
    "ancestor_id": "ancestor_id",
    "descendant_id": "descendant_id",
    "direct": "direct",
    "count": "_count",
}


class DagLinkMixin(UUIDMixin, TimestampMixin):
    """Columns, constraints and change tracking shared by all link classes."""

    __dag_options__: ClassVar[LinkOptions]
    is_scoped: ClassVar[bool] = False

    def __init_subclass__(cls, **kwargs: Any) -> None:
        # Checked before the declarative machinery maps the class.
        if issubclass(cls, DeclarativeBase) and not cls.__dict__.get("__abstract__", False):
            options = getattr(cls, "__dag_options__", None)
            if not isinstance(options, LinkOptions):
                raise ConfigurationError(
                    f"{cls.__name__} must declare __dag_options__ = LinkOptions(node_class=...)"
                )
            options.node_primary_key()
        super().__init_subclass__(**kwargs)

    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("direct", False)
        super().__init__(**kwargs)
        self._count = 0

    # ------------------------------------------------------------------
    # Columns
    # ------------------------------------------------------------------

    @declared_attr
    def ancestor_id(cls) -> Mapped[UUID]:
        options = cls.__dag_options__
        return mapped_column(
            options.ancestor_id_column,
            ForeignKey(options.node_primary_key(), ondelete="CASCADE"),
            nullable=False,
        )

    @declared_attr
    def descendant_id(cls) -> Mapped[UUID]:
        options = cls.__dag_options__
        return mapped_column(
            options.descendant_id_column,
            ForeignKey(options.node_primary_key(), ondelete="CASCADE"),
            nullable=False,
        )

    @declared_attr
    def direct(cls) -> Mapped[bool]:
        return mapped_column(
            cls.__dag_options__.direct_column,
            Boolean,
            nullable=False,
            default=False,
        )

    @declared_attr
    def _count(cls) -> Mapped[int]:
        return mapped_column(
            cls.__dag_options__.count_column,
            Integer,
            nullable=False,
            default=0,
        )

    @declared_attr
    def ancestor(cls):  # type: ignore[no-untyped-def]
        return relationship(
            cls.__dag_options__.node_class,
            foreign_keys=lambda: [cls.ancestor_id],
            lazy="raise",
        )

    @declared_attr
    def descendant(cls):  # type: ignore[no-untyped-def]
        return relationship(
            cls.__dag_options__.node_class,
            foreign_keys=lambda: [cls.descendant_id],
            lazy="raise",
        )

    @declared_attr.directive
    def __table_args__(cls) -> tuple[Any, ...]:
        options = cls.__dag_options__
        table = cls.__tablename__
        ancestor = options.ancestor_id_column
        descendant = options.descendant_id_column
        key = [ancestor, descendant]
        # One row per unordered pair: a reverse row would close a cycle.
        less = f'"{ancestor}" < "{descendant}"'
        pair: list[Any] = [
            text(f'(CASE WHEN {less} THEN "{ancestor}" ELSE "{descendant}" END)'),
            text(f'(CASE WHEN {less} THEN "{descendant}" ELSE "{ancestor}" END)'),
        ]
        args: list[Any] = []
        if cls.is_scoped:
            key.append(options.scope_column)
            pair.append(options.scope_column)
            args.append(Index(f"idx_{table}_scope", options.scope_column))
        return (
            UniqueConstraint(*key),
            Index(f"uq_{table}_pair", *pair, unique=True),
            CheckConstraint(f'"{ancestor}" <> "{descendant}"', name="no_self_loop"),
            CheckConstraint(f'"{options.count_column}" >= 0', name="count_non_negative"),
            CheckConstraint(
                f'"{options.direct_column}" OR "{options.count_column}" >= 1',
                name="direct_or_counted",
            ),
            Index(f"idx_{table}_ancestor", ancestor),
            Index(f"idx_{table}_descendant", descendant),
            *args,
        )

    # ------------------------------------------------------------------
    # Protected fields
    # ------------------------------------------------------------------

    @hybrid_property
    def count(self) -> int:
        return self._count

    @count.inplace.setter
    def _count_setter(self, value: int) -> None:
        raise ProtectedFieldViolation(
            "Unauthorized assignment to count: it is an internal field "
            "maintained by the closure engine"
        )

    def _set_count(self, value: int) -> None:
        """Engine-only write path for ``count``."""
        self._count = value

    @validates("ancestor_id", "descendant_id")
    def _validate_endpoint(self, key: str, value: Any) -> Any:
        _guard_immutable(self, key, value)
        return value

    # ------------------------------------------------------------------
    # Scope helpers
    # ------------------------------------------------------------------

    @property
    def scope_value(self) -> UUID | None:
        return None

    @classmethod
    def scope_criteria(cls, scope_id: UUID | None) -> list[ColumnElement[bool]]:
        """WHERE clauses restricting a query to one scope (none for ``None``)."""
        if scope_id is None:
            return []
        raise ConfigurationError(
            f"{cls.__name__} is not scoped; scope_id must not be given"
        )

    @classmethod
    def require_scope(cls, scope_id: UUID | None) -> None:
        """Writes to an unscoped class take no scope; scoped classes need one."""
        if scope_id is not None:
            raise ConfigurationError(
                f"{cls.__name__} is not scoped; scope_id must not be given"
            )

    @classmethod
    def new_link(
        cls,
        ancestor_id: UUID,
        descendant_id: UUID,
        scope_id: UUID | None = None,
        *,
        direct: bool,
    ) -> DagLinkMixin:
        cls.require_scope(scope_id)
        kwargs: dict[str, Any] = {
            "ancestor_id": ancestor_id,
            "descendant_id": descendant_id,
            "direct": direct,
        }
        if cls.is_scoped:
            kwargs["scope_id"] = scope_id
        return cls(**kwargs)

    # ------------------------------------------------------------------
    # Change tracking
    # ------------------------------------------------------------------

    def field_changed(self, name: str) -> bool:
        """Whether ``name`` has a pending change relative to the loaded row."""
        return _history(self, name).has_changes()

    def field_was(self, name: str) -> Any:
        """The loaded value of ``name`` before any pending change."""
        history = _history(self, name)
        if history.deleted:
            return history.deleted[0]
        if history.unchanged:
            return history.unchanged[0]
        return None

    def has_changes(self) -> bool:
        state = sa_inspect(self)
        return any(attr.history.has_changes() for attr in state.attrs)

    @property
    def endpoints(self) -> tuple[UUID, UUID]:
        return self.ancestor_id, self.descendant_id

    def __repr__(self) -> str:
        kind = "direct" if self.direct else "indirect"
        return (
            f"<{type(self).__name__} {self.ancestor_id}->{self.descendant_id} "
            f"{kind} count={self._count}>"
        )


class ScopedDagLinkMixin(DagLinkMixin):
    """Link mixin whose closure is partitioned by ``scope_id``."""

    is_scoped: ClassVar[bool] = True

    @declared_attr
    def scope_id(cls) -> Mapped[UUID]:
        return mapped_column(cls.__dag_options__.scope_column, Uuid, nullable=False)

    @validates("scope_id")
    def _validate_scope(self, key: str, value: Any) -> Any:
        _guard_immutable(self, key, value)
        return value

    @property
    def scope_value(self) -> UUID | None:
        return self.scope_id

    @classmethod
    def scope_criteria(cls, scope_id: UUID | None) -> list[ColumnElement[bool]]:
        if scope_id is None:
            return []
        return [cls.scope_id == scope_id]

    @classmethod
    def require_scope(cls, scope_id: UUID | None) -> None:
        if scope_id is None:
            raise ConfigurationError(f"{cls.__name__} is scoped; scope_id is required")


def _history(link: DagLinkMixin, name: str) -> Any:
    try:
        attribute = _TRACKED_ATTRIBUTES[name]
    except KeyError:
        if name != "scope_id" or not link.is_scoped:
            raise ValueError(f"Untracked link field: {name}") from None
        attribute = name
    return sa_inspect(link).attrs[attribute].history


def _guard_immutable(link: DagLinkMixin, key: str, value: Any) -> None:
    state = sa_inspect(link)
    if not state.has_identity:
        return
    current = state.attrs[key].loaded_value
    if current is not NO_VALUE and current != value:
        raise ProtectedFieldViolation(
            f"Column: {key} cannot be changed for an existing record, it is immutable"
        )
