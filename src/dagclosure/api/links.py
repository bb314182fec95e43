# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2026 dagclosure Contributors

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from dagclosure.closure.engine import ClosureEngine
from dagclosure.db.session import get_db
from dagclosure.exceptions import LinkNotFoundError
from dagclosure.models.node_link import NodeLink
from dagclosure.repositories.link_repository import LinkRepository
from dagclosure.schemas.common import ErrorResponse, PaginatedResponse, ValidationErrorResponse
from dagclosure.schemas.link import EdgeRequest, LinkResponse, RemovedEdgeResponse

router = APIRouter(prefix="/links", tags=["links"])

ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    404: {"model": ErrorResponse},
    413: {"model": ErrorResponse},
    422: {"model": ValidationErrorResponse},
}


async def _find_or_raise(engine: ClosureEngine[NodeLink], body: EdgeRequest) -> NodeLink:
    link = await engine.links.find_link(body.ancestor_id, body.descendant_id, body.scope_id)
    if link is None:
        raise LinkNotFoundError(
            f"No link between {body.ancestor_id} and {body.descendant_id} "
            f"(scope={body.scope_id})"
        )
    return link


@router.get("", response_model=PaginatedResponse[LinkResponse])
async def list_links(
    ancestor_id: UUID | None = Query(None),
    descendant_id: UUID | None = Query(None),
    direct: bool | None = Query(None),
    scope_id: UUID | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> PaginatedResponse[LinkResponse]:
    repo = LinkRepository(db, NodeLink)
    filters = {
        "ancestor_id": ancestor_id,
        "descendant_id": descendant_id,
        "direct": direct,
        "scope_id": scope_id,
    }
    links = await repo.list_links(limit=limit, offset=offset, **filters)
    total = await repo.count_links(**filters)
    items = [LinkResponse.model_validate(link) for link in links]
    return PaginatedResponse(items=items, total=total, limit=limit, offset=offset)


@router.post("", response_model=LinkResponse, responses=ERROR_RESPONSES, status_code=201)
async def add_edge(
    body: EdgeRequest,
    db: AsyncSession = Depends(get_db),
) -> LinkResponse:
    engine = ClosureEngine(db, NodeLink)
    link = await engine.add_edge(body.ancestor_id, body.descendant_id, body.scope_id)
    await db.commit()
    await db.refresh(link)
    return LinkResponse.model_validate(link)


@router.post("/promote", response_model=LinkResponse, responses=ERROR_RESPONSES)
async def promote_link(
    body: EdgeRequest,
    db: AsyncSession = Depends(get_db),
) -> LinkResponse:
    engine = ClosureEngine(db, NodeLink)
    link = await engine.make_direct(await _find_or_raise(engine, body))
    await db.commit()
    await db.refresh(link)
    return LinkResponse.model_validate(link)


@router.post("/demote", response_model=LinkResponse, responses=ERROR_RESPONSES)
async def demote_link(
    body: EdgeRequest,
    db: AsyncSession = Depends(get_db),
) -> LinkResponse:
    engine = ClosureEngine(db, NodeLink)
    link = await engine.make_indirect(await _find_or_raise(engine, body))
    await db.commit()
    await db.refresh(link)
    return LinkResponse.model_validate(link)


@router.delete("", response_model=RemovedEdgeResponse, responses=ERROR_RESPONSES)
async def remove_edge(
    ancestor_id: UUID = Query(...),
    descendant_id: UUID = Query(...),
    scope_id: UUID = Query(...),
    db: AsyncSession = Depends(get_db),
) -> RemovedEdgeResponse:
    engine = ClosureEngine(db, NodeLink)
    link = await _find_or_raise(
        engine,
        EdgeRequest(ancestor_id=ancestor_id, descendant_id=descendant_id, scope_id=scope_id),
    )
    await engine.remove_link(link)
    await db.commit()
    return RemovedEdgeResponse(
        ancestor_id=ancestor_id,
        descendant_id=descendant_id,
        scope_id=scope_id,
        demoted=not link.direct,
    )
