# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2026 dagclosure Contributors

"""Incremental maintenance of a closure table.

Every reachable pair (a, d) has one row. ``direct`` says the edge a -> d was
added explicitly; ``count`` is the number of distinct paths of length two or
more from a to d. Writing ``paths(x, y)`` for ``direct + count`` and
``paths(x, x) = 1``, adding the direct edge u -> v adds
``paths(a, u) * paths(v, d)`` paths to every pair with ``a`` in
``{u} + ancestors(u)`` and ``d`` in ``{v} + descendants(v)``. Removing it
subtracts the same amounts. Neither factor ever runs through u -> v itself,
since that would require a cycle.

Usage:
    Create one engine per session and link class. The engine validates before
    its first write and flushes when done; it never commits. If it raises
    after writing (closure corruption, constraint violations from a concurrent
    writer) the caller must roll the session back.
    On PostgreSQL each write takes a transaction-scoped advisory lock on its
    scope first, so writers of one scope never interleave.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict, deque
from collections.abc import Iterable
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dagclosure.closure.validators import (
    LinkSnapshot,
    create_violations,
    destroy_violations,
    raise_for_violations,
    update_violations,
)
from dagclosure.config import Settings, get_settings
from dagclosure.exceptions import (
    ClosureIntegrityError,
    LinkNotFoundError,
    LinkValidationError,
    PropagationLimitExceeded,
)
from dagclosure.models.link import DagLinkMixin
from dagclosure.repositories.link_repository import LinkRepository

L = TypeVar("L", bound=DagLinkMixin)

logger = logging.getLogger(__name__)


def _paths(link: DagLinkMixin) -> int:
    return int(link.direct) + link.count


class ClosureEngine(Generic[L]):
    """Adds, removes, promotes and demotes direct edges of one link class."""

    def __init__(
        self,
        session: AsyncSession,
        link_class: type[L],
        *,
        settings: Settings | None = None,
    ) -> None:
        self.session = session
        self.link_class = link_class
        self.links: LinkRepository[L] = LinkRepository(session, link_class)
        self._max_pairs = (settings or get_settings()).max_propagation_pairs

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def add_edge(
        self,
        ancestor_id: UUID,
        descendant_id: UUID,
        scope_id: UUID | None = None,
    ) -> L:
        """Create the direct edge ancestor -> descendant and every link it implies."""
        self.link_class.require_scope(scope_id)
        await self._lock(scope_id)
        region = await self.links.region(ancestor_id, descendant_id, scope_id)
        link = self.link_class.new_link(ancestor_id, descendant_id, scope_id, direct=True)
        violations = create_violations(link, region)
        if violations:
            logger.info(
                "Rejected edge %s -> %s (scope=%s): %s",
                ancestor_id,
                descendant_id,
                scope_id,
                ", ".join(str(v) for v in violations),
            )
            raise LinkValidationError(violations)

        upstream, downstream = await self._sweep(ancestor_id, descendant_id, scope_id)
        self.session.add(link)
        created, updated = self._spread(region, upstream, downstream, link)
        await self.session.flush()
        logger.info(
            "Added edge %s -> %s (scope=%s): %d links created, %d updated",
            ancestor_id,
            descendant_id,
            scope_id,
            created + 1,
            updated,
        )
        return link  # type: ignore[return-value]

    async def connect(
        self,
        ancestor_id: UUID,
        descendant_id: UUID,
        scope_id: UUID | None = None,
    ) -> L:
        """Make ancestor -> descendant direct, creating it or promoting an indirect link."""
        self.link_class.require_scope(scope_id)
        existing = await self.links.find_link(ancestor_id, descendant_id, scope_id)
        if existing is not None and not existing.direct:
            return await self.make_direct(existing)
        return await self.add_edge(ancestor_id, descendant_id, scope_id)

    async def remove_edge(
        self,
        ancestor_id: UUID,
        descendant_id: UUID,
        scope_id: UUID | None = None,
    ) -> None:
        self.link_class.require_scope(scope_id)
        link = await self.links.find_link(ancestor_id, descendant_id, scope_id)
        if link is None:
            raise LinkNotFoundError(
                f"No link between {ancestor_id} and {descendant_id} (scope={scope_id})"
            )
        await self.remove_link(link)

    async def remove_link(self, link: L) -> None:
        """Remove a direct edge and every path it contributed.

        The row itself is deleted unless other paths still connect its
        endpoints, in which case it stays behind as an indirect link.
        """
        raise_for_violations(destroy_violations(link))
        ancestor_id, descendant_id = link.endpoints
        scope_id = link.scope_value
        await self._lock(scope_id)
        upstream, downstream = await self._sweep(ancestor_id, descendant_id, scope_id)
        region = await self.links.region(ancestor_id, descendant_id, scope_id)
        updated, deleted = await self._retract(region, upstream, downstream, link)

        if link.count > 0:
            link.direct = False
            raise_for_violations(update_violations(link))
            outcome = "demoted"
        else:
            await self.session.delete(link)
            deleted += 1
            outcome = "deleted"
        await self.session.flush()
        logger.info(
            "Removed edge %s -> %s (scope=%s, %s): %d links updated, %d deleted",
            ancestor_id,
            descendant_id,
            scope_id,
            outcome,
            updated,
            deleted,
        )

    async def make_direct(self, link: L) -> L:
        """Promote an indirect link to a direct edge."""
        ancestor_id, descendant_id = link.endpoints
        scope_id = link.scope_value
        await self._lock(scope_id)
        upstream, downstream = await self._sweep(ancestor_id, descendant_id, scope_id)
        self._flip(link, True)
        region = await self.links.region(ancestor_id, descendant_id, scope_id)
        created, updated = self._spread(region, upstream, downstream, link)
        await self.session.flush()
        logger.info(
            "Promoted %s -> %s (scope=%s) to direct: %d links created, %d updated",
            ancestor_id,
            descendant_id,
            scope_id,
            created,
            updated,
        )
        return link

    async def make_indirect(self, link: L) -> L:
        """Demote a direct edge that other paths still justify."""
        ancestor_id, descendant_id = link.endpoints
        scope_id = link.scope_value
        await self._lock(scope_id)
        upstream, downstream = await self._sweep(ancestor_id, descendant_id, scope_id)
        self._flip(link, False)
        region = await self.links.region(ancestor_id, descendant_id, scope_id)
        updated, deleted = await self._retract(region, upstream, downstream, link)
        await self.session.flush()
        logger.info(
            "Demoted %s -> %s (scope=%s) to indirect: %d links updated, %d deleted",
            ancestor_id,
            descendant_id,
            scope_id,
            updated,
            deleted,
        )
        return link

    async def isolate(self, node_id: UUID) -> int:
        """Remove every direct edge touching a node, in every scope."""
        edges = await self.links.direct_links_touching(node_id)
        for edge in edges:
            await self.remove_link(edge)
        return len(edges)

    async def verify(self, scope_id: UUID | None = None) -> list[str]:
        """Describe every row that disagrees with a recomputation from the direct edges."""
        self.link_class.require_scope(scope_id)
        stored = await self.links.list_links(scope_id=scope_id)
        expected = expected_counts(link.endpoints for link in stored if link.direct)
        problems: list[str] = []
        seen: set[tuple[UUID, UUID]] = set()
        for link in stored:
            pair = link.endpoints
            seen.add(pair)
            want = expected.get(pair, 0)
            if link.count != want:
                problems.append(
                    f"{pair[0]} -> {pair[1]}: count is {link.count}, expected {want}"
                )
        for pair, want in expected.items():
            if pair not in seen and want > 0:
                problems.append(f"{pair[0]} -> {pair[1]}: missing link with {want} paths")
        return problems

    async def rebuild(self, scope_id: UUID | None = None) -> int:
        """Recompute every indirect link of a scope from its direct edges.

        Returns the number of rows created, updated or deleted.
        """
        self.link_class.require_scope(scope_id)
        await self._lock(scope_id)
        stored = await self.links.list_links(scope_id=scope_id)
        expected = expected_counts(link.endpoints for link in stored if link.direct)
        snapshot = LinkSnapshot(stored)
        changed = 0
        for link in stored:
            want = expected.pop(link.endpoints, 0)
            if want == link.count:
                continue
            changed += 1
            if want == 0 and not link.direct:
                snapshot.discard(link)
                await self.session.delete(link)
                continue
            link._set_count(want)
            raise_for_violations(update_violations(link))
        for (ancestor_id, descendant_id), want in expected.items():
            if want == 0:
                continue
            new = self.link_class.new_link(ancestor_id, descendant_id, scope_id, direct=False)
            new._set_count(want)
            raise_for_violations(create_violations(new, snapshot))
            self.session.add(new)
            changed += 1
        await self.session.flush()
        logger.info("Rebuilt closure (scope=%s): %d links changed", scope_id, changed)
        return changed

    async def _lock(self, scope_id: UUID | None) -> None:
        """Serialize writers of one scope until the transaction ends.

        Only PostgreSQL takes the lock. Elsewhere the unique pair index is the
        only guard against concurrent writers.
        """
        if self.session.get_bind().dialect.name != "postgresql":
            return
        key = f"{self.link_class.__tablename__}:{scope_id}"
        await self.session.execute(select(func.pg_advisory_xact_lock(func.hashtext(key))))

    # ------------------------------------------------------------------
    # Propagation
    # ------------------------------------------------------------------

    async def _sweep(
        self,
        ancestor_id: UUID,
        descendant_id: UUID,
        scope_id: UUID | None,
    ) -> tuple[dict[UUID, int], dict[UUID, int]]:
        """Path multiplicities from every node above the edge and to every node below it."""
        upstream = {ancestor_id: 1}
        for link in await self.links.links_as_descendant(ancestor_id, scope_id):
            upstream[link.ancestor_id] = _paths(link)
        downstream = {descendant_id: 1}
        for link in await self.links.links_as_ancestor(descendant_id, scope_id):
            downstream[link.descendant_id] = _paths(link)

        pairs = len(upstream) * len(downstream)
        logger.debug(
            "Sweep for %s -> %s: %d ancestors x %d descendants",
            ancestor_id,
            descendant_id,
            len(upstream),
            len(downstream),
        )
        if pairs > self._max_pairs:
            raise PropagationLimitExceeded(pairs, self._max_pairs)
        return upstream, downstream

    def _spread(
        self,
        region: LinkSnapshot,
        upstream: dict[UUID, int],
        downstream: dict[UUID, int],
        edge: DagLinkMixin,
    ) -> tuple[int, int]:
        created = updated = 0
        scope_id = edge.scope_value
        for ancestor_id, above in upstream.items():
            for descendant_id, below in downstream.items():
                if (ancestor_id, descendant_id) == edge.endpoints:
                    continue
                gained = above * below
                existing = region.find_link(ancestor_id, descendant_id, scope_id)
                if existing is not None:
                    existing._set_count(existing.count + gained)
                    raise_for_violations(update_violations(existing))
                    updated += 1
                    continue
                link = self.link_class.new_link(
                    ancestor_id, descendant_id, scope_id, direct=False
                )
                link._set_count(gained)
                raise_for_violations(create_violations(link, region))
                self.session.add(link)
                created += 1
        return created, updated

    async def _retract(
        self,
        region: LinkSnapshot,
        upstream: dict[UUID, int],
        downstream: dict[UUID, int],
        edge: DagLinkMixin,
    ) -> tuple[int, int]:
        updated = deleted = 0
        scope_id = edge.scope_value
        for ancestor_id, above in upstream.items():
            for descendant_id, below in downstream.items():
                if (ancestor_id, descendant_id) == edge.endpoints:
                    continue
                lost = above * below
                existing = region.find_link(ancestor_id, descendant_id, scope_id)
                if existing is None:
                    raise ClosureIntegrityError(
                        f"Expected a link {ancestor_id} -> {descendant_id} "
                        f"(scope={scope_id}) while removing {edge!r}"
                    )
                remaining = existing.count - lost
                if remaining < 0:
                    raise ClosureIntegrityError(
                        f"Count of {existing!r} would drop below zero while removing {edge!r}"
                    )
                if remaining == 0 and not existing.direct:
                    await self.session.delete(existing)
                    deleted += 1
                    continue
                existing._set_count(remaining)
                raise_for_violations(update_violations(existing))
                updated += 1
        return updated, deleted

    def _flip(self, link: DagLinkMixin, direct: bool) -> None:
        was = link.direct
        link.direct = direct
        violations = update_violations(link)
        if violations:
            link.direct = was
            raise LinkValidationError(violations)


def expected_counts(direct_edges: Iterable[tuple[UUID, UUID]]) -> dict[tuple[UUID, UUID], int]:
    """Indirect path counts implied by a set of direct edges.

    Raises ``ClosureIntegrityError`` if the edges contain a cycle.
    """
    children: dict[UUID, set[UUID]] = defaultdict(set)
    indegree: Counter[UUID] = Counter()
    nodes: set[UUID] = set()
    direct: set[tuple[UUID, UUID]] = set()
    for ancestor_id, descendant_id in direct_edges:
        if (ancestor_id, descendant_id) in direct:
            continue
        direct.add((ancestor_id, descendant_id))
        children[ancestor_id].add(descendant_id)
        indegree[descendant_id] += 1
        nodes.update((ancestor_id, descendant_id))

    order: list[UUID] = []
    ready = deque(node for node in nodes if indegree[node] == 0)
    while ready:
        node = ready.popleft()
        order.append(node)
        for child in children[node]:
            indegree[child] -= 1
            if indegree[child] == 0:
                ready.append(child)
    if len(order) != len(nodes):
        raise ClosureIntegrityError("Direct edges contain a cycle")

    # paths[x][y]: number of paths of any length from x to y
    paths: dict[UUID, Counter[UUID]] = {}
    for node in reversed(order):
        reach: Counter[UUID] = Counter()
        for child in children[node]:
            reach[child] += 1
            reach.update(paths[child])
        paths[node] = reach

    return {
        (ancestor_id, descendant_id): total - ((ancestor_id, descendant_id) in direct)
        for ancestor_id, reach in paths.items()
        for descendant_id, total in reach.items()
    }
