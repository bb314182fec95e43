# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2026 dagclosure Contributors

from dagclosure.repositories.base import BaseRepository
from dagclosure.repositories.link_repository import LinkRepository
from dagclosure.repositories.node_repository import NodeRepository

__all__ = ["BaseRepository", "LinkRepository", "NodeRepository"]
