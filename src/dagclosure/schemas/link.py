# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2026 dagclosure Contributors

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class EdgeRequest(BaseModel):
    """Identifies one link by its endpoints within a scope."""

    ancestor_id: UUID
    descendant_id: UUID
    scope_id: UUID


class LinkResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    ancestor_id: UUID
    descendant_id: UUID
    scope_id: UUID
    direct: bool
    count: int
    created_at: datetime
    updated_at: datetime


class RemovedEdgeResponse(BaseModel):
    ancestor_id: UUID
    descendant_id: UUID
    scope_id: UUID
    demoted: bool
