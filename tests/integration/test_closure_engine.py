# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2026 dagclosure Contributors

from __future__ import annotations

from uuid import UUID, uuid4

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from dagclosure.closure.engine import ClosureEngine
from dagclosure.closure.validators import LinkViolation
from dagclosure.config import Settings
from dagclosure.exceptions import (
    ConfigurationError,
    LinkNotFoundError,
    LinkValidationError,
    PropagationLimitExceeded,
)
from dagclosure.models.node import Node
from dagclosure.models.node_link import NodeLink
from tests.conftest import CategoryLink, add_categories, add_nodes


async def _closure(
    engine: ClosureEngine[NodeLink], nodes: dict[str, Node], scope_id: UUID
) -> dict[tuple[str, str], tuple[bool, int]]:
    """The stored closure as {(ancestor, descendant): (direct, count)} by node name."""
    names = {node.id: name for name, node in nodes.items()}
    links = await engine.links.list_links(scope_id=scope_id)
    return {
        (names[link.ancestor_id], names[link.descendant_id]): (link.direct, link.count)
        for link in links
    }


async def _edges(
    engine: ClosureEngine[NodeLink],
    nodes: dict[str, Node],
    scope_id: UUID,
    *pairs: tuple[str, str],
) -> None:
    for ancestor, descendant in pairs:
        await engine.add_edge(nodes[ancestor].id, nodes[descendant].id, scope_id)


class TestAddEdge:
    async def test_direct_link_starts_with_zero_count(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink], scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "a", "b")
        link = await engine.add_edge(nodes["a"].id, nodes["b"].id, scope_id)
        assert link.direct is True
        assert link.count == 0
        assert link.scope_id == scope_id
        assert await _closure(engine, nodes, scope_id) == {("a", "b"): (True, 0)}

    async def test_chain_creates_indirect_link(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink], scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "a", "b", "c")
        await _edges(engine, nodes, scope_id, ("a", "b"), ("b", "c"))
        assert await _closure(engine, nodes, scope_id) == {
            ("a", "b"): (True, 0),
            ("b", "c"): (True, 0),
            ("a", "c"): (False, 1),
        }

    async def test_insertion_order_does_not_matter(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink], scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "a", "b", "c", "d")
        await _edges(engine, nodes, scope_id, ("c", "d"), ("a", "b"), ("b", "c"))
        closure = await _closure(engine, nodes, scope_id)
        assert closure[("a", "d")] == (False, 1)
        assert closure[("a", "c")] == (False, 1)
        assert closure[("b", "d")] == (False, 1)
        assert len(closure) == 6

    async def test_diamond_counts_every_path(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink], scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "a", "b", "c", "d", "e")
        await _edges(
            engine, nodes, scope_id,
            ("a", "b"), ("a", "c"), ("b", "d"), ("c", "d"), ("d", "e"),
        )
        closure = await _closure(engine, nodes, scope_id)
        assert closure[("a", "d")] == (False, 2)
        assert closure[("a", "e")] == (False, 2)
        assert closure[("b", "e")] == (False, 1)
        assert closure[("c", "e")] == (False, 1)
        assert await engine.verify(scope_id) == []

    async def test_paths_multiply_across_the_new_edge(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink], scope_id: UUID
    ) -> None:
        # Two paths into m and two paths out of n: m -> n adds 2 * 2 paths x ~> y.
        nodes = await add_nodes(db_session, "x", "p", "q", "m", "n", "r", "s", "y")
        await _edges(
            engine, nodes, scope_id,
            ("x", "p"), ("x", "q"), ("p", "m"), ("q", "m"),
            ("n", "r"), ("n", "s"), ("r", "y"), ("s", "y"),
        )
        await engine.add_edge(nodes["m"].id, nodes["n"].id, scope_id)
        closure = await _closure(engine, nodes, scope_id)
        assert closure[("x", "y")] == (False, 4)
        assert closure[("x", "n")] == (False, 2)
        assert closure[("m", "y")] == (False, 2)
        assert await engine.verify(scope_id) == []

    async def test_duplicate_direct_link_rejected(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink], scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "a", "b")
        await _edges(engine, nodes, scope_id, ("a", "b"))
        with pytest.raises(LinkValidationError) as exc_info:
            await engine.add_edge(nodes["a"].id, nodes["b"].id, scope_id)
        assert exc_info.value.reasons == [LinkViolation.DUPLICATE]

    async def test_existing_indirect_link_is_a_duplicate(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink], scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "a", "b", "c")
        await _edges(engine, nodes, scope_id, ("a", "b"), ("b", "c"))
        with pytest.raises(LinkValidationError) as exc_info:
            await engine.add_edge(nodes["a"].id, nodes["c"].id, scope_id)
        assert exc_info.value.reasons == [LinkViolation.DUPLICATE]

    async def test_reverse_edge_rejected_and_closure_unchanged(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink], scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "a", "b", "c")
        await _edges(engine, nodes, scope_id, ("a", "b"), ("b", "c"))
        before = await _closure(engine, nodes, scope_id)
        for ancestor, descendant in [("b", "a"), ("c", "a"), ("c", "b")]:
            with pytest.raises(LinkValidationError) as exc_info:
                await engine.add_edge(nodes[ancestor].id, nodes[descendant].id, scope_id)
            assert exc_info.value.reasons == [LinkViolation.OPPOSITE_DIRECTION]
        assert await _closure(engine, nodes, scope_id) == before

    async def test_self_loop_rejected(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink], scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "a")
        with pytest.raises(LinkValidationError) as exc_info:
            await engine.add_edge(nodes["a"].id, nodes["a"].id, scope_id)
        assert exc_info.value.reasons == [LinkViolation.SELF_LOOP]
        assert await _closure(engine, nodes, scope_id) == {}

    async def test_scope_required_for_scoped_links(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink]
    ) -> None:
        nodes = await add_nodes(db_session, "a", "b")
        with pytest.raises(ConfigurationError):
            await engine.add_edge(nodes["a"].id, nodes["b"].id)

    async def test_propagation_limit(
        self, db_session: AsyncSession, scope_id: UUID
    ) -> None:
        engine = ClosureEngine(db_session, NodeLink, settings=Settings(max_propagation_pairs=2))
        nodes = await add_nodes(db_session, "a", "b", "c", "d")
        await _edges(engine, nodes, scope_id, ("a", "b"), ("b", "c"))
        before = await _closure(engine, nodes, scope_id)
        with pytest.raises(PropagationLimitExceeded) as exc_info:
            await engine.add_edge(nodes["c"].id, nodes["d"].id, scope_id)
        assert exc_info.value.pairs == 3
        assert exc_info.value.limit == 2
        assert await _closure(engine, nodes, scope_id) == before


class TestRemoveEdge:
    async def test_remove_restores_previous_closure(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink], scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "a", "b", "c", "d")
        await _edges(engine, nodes, scope_id, ("a", "b"), ("c", "d"))
        before = await _closure(engine, nodes, scope_id)
        await engine.add_edge(nodes["b"].id, nodes["c"].id, scope_id)
        await engine.remove_edge(nodes["b"].id, nodes["c"].id, scope_id)
        assert await _closure(engine, nodes, scope_id) == before

    async def test_remove_one_side_of_diamond(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink], scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "a", "b", "c", "d")
        await _edges(engine, nodes, scope_id, ("a", "b"), ("a", "c"), ("b", "d"), ("c", "d"))
        await engine.remove_edge(nodes["b"].id, nodes["d"].id, scope_id)
        closure = await _closure(engine, nodes, scope_id)
        assert ("b", "d") not in closure
        assert closure[("a", "d")] == (False, 1)
        assert await engine.verify(scope_id) == []

    async def test_remove_direct_link_with_other_paths_demotes_it(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink], scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "a", "b", "c")
        await _edges(engine, nodes, scope_id, ("a", "b"), ("b", "c"))
        await engine.connect(nodes["a"].id, nodes["c"].id, scope_id)
        await engine.remove_edge(nodes["a"].id, nodes["c"].id, scope_id)
        closure = await _closure(engine, nodes, scope_id)
        assert closure[("a", "c")] == (False, 1)

    async def test_remove_missing_link(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink], scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "a", "b")
        with pytest.raises(LinkNotFoundError):
            await engine.remove_edge(nodes["a"].id, nodes["b"].id, scope_id)

    async def test_indirect_link_cannot_be_removed(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink], scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "a", "b", "c")
        await _edges(engine, nodes, scope_id, ("a", "b"), ("b", "c"))
        with pytest.raises(LinkValidationError) as exc_info:
            await engine.remove_edge(nodes["a"].id, nodes["c"].id, scope_id)
        assert exc_info.value.reasons == [LinkViolation.NOT_DIRECT]

    async def test_remove_every_edge_empties_closure(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink], scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "a", "b", "c", "d")
        edges = [("a", "b"), ("a", "c"), ("b", "d"), ("c", "d")]
        await _edges(engine, nodes, scope_id, *edges)
        for ancestor, descendant in reversed(edges):
            await engine.remove_edge(nodes[ancestor].id, nodes[descendant].id, scope_id)
        assert await _closure(engine, nodes, scope_id) == {}


class TestPromoteAndDemote:
    async def test_connect_promotes_indirect_link(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink], scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "a", "b", "c")
        await _edges(engine, nodes, scope_id, ("a", "b"), ("b", "c"))
        link = await engine.connect(nodes["a"].id, nodes["c"].id, scope_id)
        assert link.direct is True
        assert link.count == 1
        assert await engine.verify(scope_id) == []

    async def test_connect_creates_missing_edge(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink], scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "a", "b")
        link = await engine.connect(nodes["a"].id, nodes["b"].id, scope_id)
        assert (link.direct, link.count) == (True, 0)

    async def test_promotion_propagates_to_ancestors(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink], scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "x", "a", "b", "c")
        await _edges(engine, nodes, scope_id, ("x", "a"), ("a", "b"), ("b", "c"))
        link = await engine.links.find_link(nodes["a"].id, nodes["c"].id, scope_id)
        assert link is not None
        await engine.make_direct(link)
        closure = await _closure(engine, nodes, scope_id)
        assert closure[("a", "c")] == (True, 1)
        assert closure[("x", "c")] == (False, 2)
        assert await engine.verify(scope_id) == []

    async def test_promoting_direct_link_reports_no_changes(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink], scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "a", "b")
        link = await engine.add_edge(nodes["a"].id, nodes["b"].id, scope_id)
        with pytest.raises(LinkValidationError) as exc_info:
            await engine.make_direct(link)
        assert exc_info.value.reasons == [LinkViolation.NO_CHANGES]

    async def test_demotion_with_remaining_paths(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink], scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "x", "a", "b", "c")
        await _edges(engine, nodes, scope_id, ("x", "a"), ("a", "b"), ("b", "c"))
        link = await engine.connect(nodes["a"].id, nodes["c"].id, scope_id)
        await engine.make_indirect(link)
        closure = await _closure(engine, nodes, scope_id)
        assert closure[("a", "c")] == (False, 1)
        assert closure[("x", "c")] == (False, 1)
        assert await engine.verify(scope_id) == []

    async def test_unsafe_demotion_rejected(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink], scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "a", "b")
        link = await engine.add_edge(nodes["a"].id, nodes["b"].id, scope_id)
        with pytest.raises(LinkValidationError) as exc_info:
            await engine.make_indirect(link)
        assert exc_info.value.reasons == [LinkViolation.UNSAFE_DEMOTION]
        assert link.direct is True


class TestScopes:
    async def test_scopes_are_isolated(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink]
    ) -> None:
        first, second = uuid4(), uuid4()
        nodes = await add_nodes(db_session, "a", "b", "c")
        await _edges(engine, nodes, first, ("a", "b"), ("b", "c"))
        # The reverse direction is a different graph in another scope.
        await _edges(engine, nodes, second, ("c", "b"), ("b", "a"))
        assert await _closure(engine, nodes, first) == {
            ("a", "b"): (True, 0),
            ("b", "c"): (True, 0),
            ("a", "c"): (False, 1),
        }
        assert await _closure(engine, nodes, second) == {
            ("c", "b"): (True, 0),
            ("b", "a"): (True, 0),
            ("c", "a"): (False, 1),
        }

    async def test_remove_in_one_scope_leaves_other(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink]
    ) -> None:
        first, second = uuid4(), uuid4()
        nodes = await add_nodes(db_session, "a", "b", "c")
        await _edges(engine, nodes, first, ("a", "b"), ("b", "c"))
        await _edges(engine, nodes, second, ("a", "b"), ("b", "c"))
        await engine.remove_edge(nodes["a"].id, nodes["b"].id, first)
        assert ("a", "c") not in await _closure(engine, nodes, first)
        assert (await _closure(engine, nodes, second))[("a", "c")] == (False, 1)


class TestUnscopedGraph:
    async def test_unscoped_propagation(
        self, db_session: AsyncSession, category_engine: ClosureEngine[CategoryLink]
    ) -> None:
        cats = await add_categories(db_session, "root", "mid", "leaf")
        await category_engine.add_edge(cats["root"].id, cats["mid"].id)
        await category_engine.add_edge(cats["mid"].id, cats["leaf"].id)
        link = await category_engine.links.find_link(cats["root"].id, cats["leaf"].id)
        assert link is not None
        assert (link.direct, link.count) == (False, 1)
        assert await category_engine.verify() == []

    async def test_unscoped_rejects_scope(
        self, db_session: AsyncSession, category_engine: ClosureEngine[CategoryLink]
    ) -> None:
        cats = await add_categories(db_session, "root", "mid")
        with pytest.raises(ConfigurationError):
            await category_engine.add_edge(cats["root"].id, cats["mid"].id, uuid4())


class TestIsolate:
    async def test_isolate_removes_every_edge_through_node(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink]
    ) -> None:
        first, second = uuid4(), uuid4()
        nodes = await add_nodes(db_session, "a", "b", "c")
        await _edges(engine, nodes, first, ("a", "b"), ("b", "c"))
        await _edges(engine, nodes, second, ("a", "b"))
        removed = await engine.isolate(nodes["b"].id)
        assert removed == 3
        assert await _closure(engine, nodes, first) == {}
        assert await _closure(engine, nodes, second) == {}


class TestVerifyAndRebuild:
    async def test_verify_reports_wrong_count(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink], scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "a", "b", "c")
        await _edges(engine, nodes, scope_id, ("a", "b"), ("b", "c"))
        link = await engine.links.find_link(nodes["a"].id, nodes["c"].id, scope_id)
        assert link is not None
        link._set_count(5)
        await db_session.flush()
        problems = await engine.verify(scope_id)
        assert len(problems) == 1
        assert "count is 5, expected 1" in problems[0]

    async def test_rebuild_repairs_counts_and_missing_rows(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink], scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "a", "b", "c", "d")
        await _edges(engine, nodes, scope_id, ("a", "b"), ("b", "c"), ("c", "d"))
        expected = await _closure(engine, nodes, scope_id)
        wrong = await engine.links.find_link(nodes["a"].id, nodes["c"].id, scope_id)
        missing = await engine.links.find_link(nodes["a"].id, nodes["d"].id, scope_id)
        assert wrong is not None and missing is not None
        wrong._set_count(7)
        await db_session.delete(missing)
        await db_session.flush()
        assert len(await engine.verify(scope_id)) == 2

        changed = await engine.rebuild(scope_id)
        assert changed == 2
        assert await engine.verify(scope_id) == []
        assert await _closure(engine, nodes, scope_id) == expected

    async def test_rebuild_of_consistent_closure_is_noop(
        self, db_session: AsyncSession, engine: ClosureEngine[NodeLink], scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "a", "b", "c")
        await _edges(engine, nodes, scope_id, ("a", "b"), ("b", "c"))
        assert await engine.rebuild(scope_id) == 0


class TestStorageConstraints:
    async def test_unique_key_rejects_concurrent_duplicate(
        self, db_session: AsyncSession, scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "a", "b")
        db_session.add(NodeLink.new_link(nodes["a"].id, nodes["b"].id, scope_id, direct=True))
        db_session.add(NodeLink.new_link(nodes["a"].id, nodes["b"].id, scope_id, direct=True))
        with pytest.raises(IntegrityError):
            await db_session.flush()

    async def test_indirect_row_needs_a_path(
        self, db_session: AsyncSession, scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "a", "b")
        db_session.add(NodeLink.new_link(nodes["a"].id, nodes["b"].id, scope_id, direct=False))
        with pytest.raises(IntegrityError):
            await db_session.flush()

    async def test_unique_pair_rejects_opposite_direction(
        self, db_session: AsyncSession, scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "a", "b")
        db_session.add(NodeLink.new_link(nodes["a"].id, nodes["b"].id, scope_id, direct=True))
        db_session.add(NodeLink.new_link(nodes["b"].id, nodes["a"].id, scope_id, direct=True))
        with pytest.raises(IntegrityError):
            await db_session.flush()

    async def test_opposite_direction_allowed_across_scopes(
        self, db_session: AsyncSession
    ) -> None:
        nodes = await add_nodes(db_session, "a", "b")
        db_session.add(NodeLink.new_link(nodes["a"].id, nodes["b"].id, uuid4(), direct=True))
        db_session.add(NodeLink.new_link(nodes["b"].id, nodes["a"].id, uuid4(), direct=True))
        await db_session.flush()

    async def test_longer_cycle_meets_on_unordered_pair(
        self, engine: ClosureEngine[NodeLink], db_session: AsyncSession, scope_id: UUID
    ) -> None:
        nodes = await add_nodes(db_session, "a", "b", "c")
        await engine.add_edge(nodes["a"].id, nodes["b"].id, scope_id)
        await engine.add_edge(nodes["b"].id, nodes["c"].id, scope_id)
        # A writer that missed b -> c would insert c -> a over the stored a -> c row.
        db_session.add(NodeLink.new_link(nodes["c"].id, nodes["a"].id, scope_id, direct=True))
        with pytest.raises(IntegrityError):
            await db_session.flush()
