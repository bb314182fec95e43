# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2026 dagclosure Contributors

from dagclosure.models.base import Base, TimestampMixin, UUIDMixin
from dagclosure.models.link import DagLinkMixin, LinkOptions, ScopedDagLinkMixin
from dagclosure.models.node import Node
from dagclosure.models.node_link import NodeLink

__all__ = [
    "Base",
    "DagLinkMixin",
    "LinkOptions",
    "Node",
    "NodeLink",
    "ScopedDagLinkMixin",
    "TimestampMixin",
    "UUIDMixin",
]
