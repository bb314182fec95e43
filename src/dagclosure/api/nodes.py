# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2026 dagclosure Contributors

from __future__ import annotations

import enum
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from dagclosure.closure.engine import ClosureEngine
from dagclosure.db.session import get_db
from dagclosure.models.node import Node
from dagclosure.models.node_link import NodeLink
from dagclosure.repositories.node_repository import NodeRepository
from dagclosure.schemas.common import PaginatedResponse
from dagclosure.schemas.node import NodeCreate, NodeResponse, NodeStatusResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/nodes", tags=["nodes"])


class Relation(enum.StrEnum):
    ANCESTORS = "ancestors"
    DESCENDANTS = "descendants"
    PARENTS = "parents"
    CHILDREN = "children"


async def _get_node_or_404(repo: NodeRepository, node_id: UUID) -> Node:
    node = await repo.get_by_id(node_id)
    if node is None:
        raise HTTPException(status_code=404, detail="Node not found")
    return node


@router.get("", response_model=PaginatedResponse[NodeResponse])
async def list_nodes(
    name: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> PaginatedResponse[NodeResponse]:
    repo = NodeRepository(db)
    nodes = await repo.list_nodes(limit=limit, offset=offset, name=name)
    total = await repo.count_nodes(name=name)
    items = [NodeResponse.model_validate(n) for n in nodes]
    return PaginatedResponse(items=items, total=total, limit=limit, offset=offset)


@router.post("", response_model=NodeResponse, status_code=201)
async def create_node(
    body: NodeCreate,
    db: AsyncSession = Depends(get_db),
) -> NodeResponse:
    repo = NodeRepository(db)
    node = await repo.create(Node(name=body.name, description=body.description))
    await db.commit()
    await db.refresh(node)
    return NodeResponse.model_validate(node)


@router.get("/{node_id}", response_model=NodeResponse)
async def get_node(
    node_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> NodeResponse:
    node = await _get_node_or_404(NodeRepository(db), node_id)
    return NodeResponse.model_validate(node)


@router.delete("/{node_id}", status_code=204)
async def delete_node(
    node_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> Response:
    repo = NodeRepository(db)
    node = await _get_node_or_404(repo, node_id)
    removed = await ClosureEngine(db, NodeLink).isolate(node.id)
    await repo.delete(node)
    await db.commit()
    logger.info("Deleted node %s after removing %d direct edges", node_id, removed)
    return Response(status_code=204)


@router.get("/{node_id}/status", response_model=NodeStatusResponse)
async def get_node_status(
    node_id: UUID,
    scope_id: UUID | None = Query(None),
    db: AsyncSession = Depends(get_db),
) -> NodeStatusResponse:
    node = await _get_node_or_404(NodeRepository(db), node_id)
    return NodeStatusResponse(
        id=node.id,
        scope_id=scope_id,
        leaf=await node.graph.is_leaf(scope_id),
        root=await node.graph.is_root(scope_id),
    )


@router.get("/{node_id}/{relation}", response_model=list[NodeResponse])
async def list_related_nodes(
    node_id: UUID,
    relation: Relation,
    scope_id: UUID | None = Query(None),
    db: AsyncSession = Depends(get_db),
) -> list[NodeResponse]:
    node = await _get_node_or_404(NodeRepository(db), node_id)
    read = getattr(node.graph, relation.value)
    related = await read(scope_id)
    return [NodeResponse.model_validate(n) for n in related]
