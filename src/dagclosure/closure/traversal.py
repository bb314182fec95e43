# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2026 dagclosure Contributors

"""Node-side reachability accessors.

A node class declares one ``DagLinks`` per link table it participates in.
The attribute name namespaces the accessor set, so a node can sit in several
independent graphs::

    class Category(UUIDMixin, Base):
        __tablename__ = "categories"
        tree = DagLinks("CategoryLink")

    await category.tree.ancestors()
    await category.tree.is_leaf(scope_id=catalog_id)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession, async_object_session

from dagclosure.exceptions import ConfigurationError
from dagclosure.models.link import DagLinkMixin

if TYPE_CHECKING:
    from dagclosure.repositories.link_repository import LinkRepository


class NodeLinks:
    """The ancestor/descendant/parent/child reads of one node."""

    def __init__(
        self,
        node: Any,
        link_class: type[DagLinkMixin],
        session: AsyncSession | None = None,
    ) -> None:
        self.node = node
        self.link_class = link_class
        self._session = session

    @property
    def node_id(self) -> UUID:
        mapper = inspect(type(self.node))
        return getattr(self.node, mapper.get_property_by_column(mapper.primary_key[0]).key)

    def using(self, session: AsyncSession) -> NodeLinks:
        return NodeLinks(self.node, self.link_class, session)

    def _repository(self) -> LinkRepository[Any]:
        # Deferred: node models import this module before repositories exist.
        from dagclosure.repositories.link_repository import LinkRepository

        session = self._session
        if session is None:
            session = async_object_session(self.node)
        if session is None:
            raise ConfigurationError(
                f"{self.node!r} is not attached to a session; call .using(session)"
            )
        return LinkRepository(session, self.link_class)

    async def ancestors(self, scope_id: UUID | None = None) -> list[Any]:
        return await self._repository().ancestors(self.node_id, scope_id)

    async def descendants(self, scope_id: UUID | None = None) -> list[Any]:
        return await self._repository().descendants(self.node_id, scope_id)

    async def parents(self, scope_id: UUID | None = None) -> list[Any]:
        return await self._repository().parents(self.node_id, scope_id)

    async def children(self, scope_id: UUID | None = None) -> list[Any]:
        return await self._repository().children(self.node_id, scope_id)

    async def self_and_ancestors(self, scope_id: UUID | None = None) -> list[Any]:
        return await self._repository().self_and_ancestors(self.node, scope_id)

    async def self_and_descendants(self, scope_id: UUID | None = None) -> list[Any]:
        return await self._repository().self_and_descendants(self.node, scope_id)

    async def is_leaf(self, scope_id: UUID | None = None) -> bool:
        return await self._repository().is_leaf(self.node_id, scope_id)

    async def is_root(self, scope_id: UUID | None = None) -> bool:
        return await self._repository().is_root(self.node_id, scope_id)


class DagLinks:
    """Descriptor binding a node class to one link class."""

    def __init__(self, link_class: type[DagLinkMixin] | str | None) -> None:
        if link_class is None:
            raise ConfigurationError("DagLinks must be provided with a link class")
        self._link_class = link_class
        self._resolved: type[DagLinkMixin] | None = None
        self.name = ""

    def __set_name__(self, owner: type[Any], name: str) -> None:
        self.name = name

    def __get__(self, instance: Any, owner: type[Any]) -> Any:
        if instance is None:
            return self
        return NodeLinks(instance, self.resolve(owner))

    def resolve(self, owner: type[Any]) -> type[DagLinkMixin]:
        """Look up the link class, by name through the owner's registry if needed."""
        if self._resolved is not None:
            return self._resolved
        link_class = self._link_class
        if isinstance(link_class, str):
            matches = [
                mapper.class_
                for mapper in owner.registry.mappers
                if mapper.class_.__name__ == link_class
            ]
            if len(matches) != 1:
                raise ConfigurationError(
                    f"{owner.__name__}.{self.name}: cannot resolve link class {link_class!r}"
                )
            link_class = matches[0]
        if not (isinstance(link_class, type) and issubclass(link_class, DagLinkMixin)):
            raise ConfigurationError(
                f"{owner.__name__}.{self.name}: {link_class!r} is not a link class"
            )
        node_class = link_class.__dag_options__.node_class
        if node_class is None or not issubclass(owner, node_class):
            raise ConfigurationError(
                f"{owner.__name__}.{self.name}: {link_class.__name__} links "
                f"{getattr(node_class, '__name__', node_class)} nodes"
            )
        self._resolved = link_class
        return link_class
