# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2026 dagclosure Contributors

from __future__ import annotations

from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy import ColumnElement, Select, func, inspect, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from dagclosure.closure.validators import LinkSnapshot
from dagclosure.models.link import DagLinkMixin
from dagclosure.repositories.base import BaseRepository

L = TypeVar("L", bound=DagLinkMixin)


class LinkRepository(BaseRepository[L], Generic[L]):  # type: ignore[type-var]
    """Reads over one closure table.

    Every method taking ``scope_id`` restricts the link set to that scope
    before projecting; ``None`` means all scopes of a scoped link class.
    """

    def __init__(self, session: AsyncSession, model: type[L]) -> None:
        super().__init__(session, model)  # type: ignore[arg-type]

    @property
    def node_class(self) -> type[Any]:
        return self.model.__dag_options__.node_class  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Query scopes
    # ------------------------------------------------------------------

    def in_scope(self, scope_id: UUID | None = None) -> Select[tuple[L]]:
        return select(self.model).where(*self.model.scope_criteria(scope_id))

    def with_ancestor(self, ancestor_id: UUID, scope_id: UUID | None = None) -> Select[tuple[L]]:
        return self.in_scope(scope_id).where(self.model.ancestor_id == ancestor_id)

    def with_descendant(
        self, descendant_id: UUID, scope_id: UUID | None = None
    ) -> Select[tuple[L]]:
        return self.in_scope(scope_id).where(self.model.descendant_id == descendant_id)

    def direct(self, scope_id: UUID | None = None) -> Select[tuple[L]]:
        return self.in_scope(scope_id).where(self.model.direct.is_(True))

    def indirect(self, scope_id: UUID | None = None) -> Select[tuple[L]]:
        return self.in_scope(scope_id).where(self.model.direct.is_(False))

    # ------------------------------------------------------------------
    # Link lookups
    # ------------------------------------------------------------------

    async def find_link(
        self,
        ancestor_id: UUID,
        descendant_id: UUID,
        scope_id: UUID | None = None,
    ) -> L | None:
        stmt = self.with_ancestor(ancestor_id, scope_id).where(
            self.model.descendant_id == descendant_id
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def links_as_ancestor(self, node_id: UUID, scope_id: UUID | None = None) -> list[L]:
        result = await self.session.execute(self.with_ancestor(node_id, scope_id))
        return list(result.scalars().all())

    async def links_as_descendant(
        self, node_id: UUID, scope_id: UUID | None = None
    ) -> list[L]:
        result = await self.session.execute(self.with_descendant(node_id, scope_id))
        return list(result.scalars().all())

    async def direct_links_touching(self, node_id: UUID) -> list[L]:
        stmt = self.direct().where(
            (self.model.ancestor_id == node_id) | (self.model.descendant_id == node_id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    def _filters(
        self,
        ancestor_id: UUID | None,
        descendant_id: UUID | None,
        direct: bool | None,
        scope_id: UUID | None,
    ) -> list[ColumnElement[bool]]:
        criteria = list(self.model.scope_criteria(scope_id))
        if ancestor_id is not None:
            criteria.append(self.model.ancestor_id == ancestor_id)
        if descendant_id is not None:
            criteria.append(self.model.descendant_id == descendant_id)
        if direct is not None:
            criteria.append(self.model.direct.is_(direct))
        return criteria

    async def list_links(
        self,
        *,
        ancestor_id: UUID | None = None,
        descendant_id: UUID | None = None,
        direct: bool | None = None,
        scope_id: UUID | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[L]:
        stmt = select(self.model).where(
            *self._filters(ancestor_id, descendant_id, direct, scope_id)
        )
        if limit is not None:
            stmt = stmt.order_by(self.model.created_at, self.model.id)
            stmt = stmt.limit(limit).offset(offset)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_links(
        self,
        *,
        ancestor_id: UUID | None = None,
        descendant_id: UUID | None = None,
        direct: bool | None = None,
        scope_id: UUID | None = None,
    ) -> int:
        stmt = (
            select(func.count())
            .select_from(self.model)
            .where(*self._filters(ancestor_id, descendant_id, direct, scope_id))
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def region(
        self,
        ancestor_id: UUID,
        descendant_id: UUID,
        scope_id: UUID | None = None,
    ) -> LinkSnapshot:
        """Load every link between the upstream of one node and the downstream of another.

        Covers both directions: rows running from ``{ancestor} + ancestors(ancestor)``
        to ``{descendant} + descendants(descendant)`` and rows running back.
        """
        link = self.model
        inner = aliased(link)
        scope = inner.scope_criteria(scope_id)
        upstream = or_(
            link.ancestor_id == ancestor_id,
            link.ancestor_id.in_(
                select(inner.ancestor_id).where(inner.descendant_id == ancestor_id, *scope)
            ),
        )
        downstream = or_(
            link.descendant_id == descendant_id,
            link.descendant_id.in_(
                select(inner.descendant_id).where(inner.ancestor_id == descendant_id, *scope)
            ),
        )
        back_from = or_(
            link.ancestor_id == descendant_id,
            link.ancestor_id.in_(
                select(inner.descendant_id).where(inner.ancestor_id == descendant_id, *scope)
            ),
        )
        back_to = or_(
            link.descendant_id == ancestor_id,
            link.descendant_id.in_(
                select(inner.ancestor_id).where(inner.descendant_id == ancestor_id, *scope)
            ),
        )
        stmt = self.in_scope(scope_id).where(
            or_(upstream & downstream, back_from & back_to)
        )
        result = await self.session.execute(stmt)
        return LinkSnapshot(result.scalars().all())

    # ------------------------------------------------------------------
    # Node traversal
    # ------------------------------------------------------------------

    def _related_nodes(
        self,
        node_column: Any,
        anchor_column: Any,
        node_id: UUID,
        scope_id: UUID | None,
        *,
        direct_only: bool,
    ) -> Select[Any]:
        node = self.node_class
        criteria: list[ColumnElement[bool]] = [
            anchor_column == node_id,
            *self.model.scope_criteria(scope_id),
        ]
        if direct_only:
            criteria.append(self.model.direct.is_(True))
        node_pk = self.model.__dag_options__.node_primary_key()
        return select(node).where(node_pk.in_(select(node_column).where(*criteria)))

    async def _nodes(self, stmt: Select[Any]) -> list[Any]:
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def ancestors(self, node_id: UUID, scope_id: UUID | None = None) -> list[Any]:
        return await self._nodes(
            self._related_nodes(
                self.model.ancestor_id, self.model.descendant_id, node_id, scope_id,
                direct_only=False,
            )
        )

    async def descendants(self, node_id: UUID, scope_id: UUID | None = None) -> list[Any]:
        return await self._nodes(
            self._related_nodes(
                self.model.descendant_id, self.model.ancestor_id, node_id, scope_id,
                direct_only=False,
            )
        )

    async def parents(self, node_id: UUID, scope_id: UUID | None = None) -> list[Any]:
        return await self._nodes(
            self._related_nodes(
                self.model.ancestor_id, self.model.descendant_id, node_id, scope_id,
                direct_only=True,
            )
        )

    async def children(self, node_id: UUID, scope_id: UUID | None = None) -> list[Any]:
        return await self._nodes(
            self._related_nodes(
                self.model.descendant_id, self.model.ancestor_id, node_id, scope_id,
                direct_only=True,
            )
        )

    async def self_and_ancestors(self, node: Any, scope_id: UUID | None = None) -> list[Any]:
        return [node, *await self.ancestors(node_identity(node), scope_id)]

    async def self_and_descendants(self, node: Any, scope_id: UUID | None = None) -> list[Any]:
        return [node, *await self.descendants(node_identity(node), scope_id)]

    async def is_leaf(self, node_id: UUID, scope_id: UUID | None = None) -> bool:
        stmt = select(
            ~self.direct(scope_id).where(self.model.ancestor_id == node_id).exists()
        )
        result = await self.session.execute(stmt)
        return bool(result.scalar_one())

    async def is_root(self, node_id: UUID, scope_id: UUID | None = None) -> bool:
        stmt = select(
            ~self.direct(scope_id).where(self.model.descendant_id == node_id).exists()
        )
        result = await self.session.execute(stmt)
        return bool(result.scalar_one())


def node_identity(node: Any) -> UUID:
    mapper = inspect(type(node))
    return getattr(node, mapper.get_property_by_column(mapper.primary_key[0]).key)
