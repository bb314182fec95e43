# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2026 dagclosure Contributors

from __future__ import annotations

import os
from collections.abc import AsyncIterator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import Text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.pool import StaticPool

from dagclosure.closure.engine import ClosureEngine
from dagclosure.closure.traversal import DagLinks
from dagclosure.config import Settings
from dagclosure.models.base import Base, UUIDMixin
from dagclosure.models.link import DagLinkMixin, LinkOptions
from dagclosure.models.node import Node
from dagclosure.models.node_link import NodeLink

# ---------------------------------------------------------------------------
# An unscoped graph with renamed columns, used alongside Node/NodeLink
# ---------------------------------------------------------------------------


class Category(UUIDMixin, Base):
    __tablename__ = "test_categories"

    name: Mapped[str] = mapped_column(Text, nullable=False)

    tree = DagLinks("CategoryLink")


class CategoryLink(DagLinkMixin, Base):
    __tablename__ = "test_category_links"
    __dag_options__ = LinkOptions(
        node_class=Category,
        direct_column="is_direct",
        count_column="path_count",
    )


def _get_test_database_url() -> str:
    """Return the test database URL from env, falling back to in-memory SQLite."""
    return os.environ.get(
        "TEST_DATABASE_URL",
        "sqlite+aiosqlite:///:memory:",
    )


@pytest.fixture
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Create an async engine for the test database."""
    url = _get_test_database_url()
    if url.startswith("sqlite"):
        # One shared connection so every session sees the same in-memory database.
        engine = create_async_engine(url, echo=False, poolclass=StaticPool)
    else:
        engine = create_async_engine(url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Provide a transactional database session that rolls back after each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def scope_id() -> UUID:
    return uuid4()


@pytest.fixture
def engine(db_session: AsyncSession) -> ClosureEngine[NodeLink]:
    """Closure engine over the scoped node graph."""
    return ClosureEngine(db_session, NodeLink, settings=Settings())


@pytest.fixture
def category_engine(db_session: AsyncSession) -> ClosureEngine[CategoryLink]:
    """Closure engine over the unscoped category graph."""
    return ClosureEngine(db_session, CategoryLink, settings=Settings())


# ---------------------------------------------------------------------------
# Factory helpers
# ---------------------------------------------------------------------------


def make_node(*, name: str = "Test Node", description: str | None = None) -> dict[str, object]:
    """Return kwargs suitable for constructing a Node model instance."""
    return {
        "id": uuid4(),
        "name": name,
        "description": description,
    }


async def add_nodes(session: AsyncSession, *names: str) -> dict[str, Node]:
    """Persist one node per name and return them keyed by name."""
    nodes = {name: Node(**make_node(name=name)) for name in names}
    session.add_all(nodes.values())
    await session.flush()
    return nodes


async def add_categories(session: AsyncSession, *names: str) -> dict[str, Category]:
    categories = {name: Category(id=uuid4(), name=name) for name in names}
    session.add_all(categories.values())
    await session.flush()
    return categories
