# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2026 dagclosure Contributors

from __future__ import annotations

from dagclosure.models.base import Base
from dagclosure.models.link import LinkOptions, ScopedDagLinkMixin
from dagclosure.models.node import Node


class NodeLink(ScopedDagLinkMixin, Base):
    """Closure rows of the service's node graph, partitioned by scope."""

    __tablename__ = "node_links"
    __dag_options__ = LinkOptions(node_class=Node)
