# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2026 dagclosure Contributors

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dagclosure.models.node import Node
from dagclosure.repositories.base import BaseRepository


class NodeRepository(BaseRepository[Node]):
    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, Node)

    async def list_nodes(
        self,
        limit: int = 50,
        offset: int = 0,
        name: str | None = None,
    ) -> list[Node]:
        stmt = select(Node)
        if name is not None:
            stmt = stmt.where(Node.name == name)
        stmt = stmt.order_by(Node.created_at, Node.name).limit(limit).offset(offset)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_nodes(self, name: str | None = None) -> int:
        stmt = select(func.count()).select_from(Node)
        if name is not None:
            stmt = stmt.where(Node.name == name)
        result = await self.session.execute(stmt)
        return result.scalar_one()
