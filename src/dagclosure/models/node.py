# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2026 dagclosure Contributors

from __future__ import annotations

from sqlalchemy import Text
from sqlalchemy.orm import Mapped, mapped_column

from dagclosure.closure.traversal import DagLinks
from dagclosure.models.base import Base, TimestampMixin, UUIDMixin


class Node(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "nodes"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)

    graph = DagLinks("NodeLink")

    def __repr__(self) -> str:
        return f"<Node {self.name!r} {self.id}>"
