# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2026 dagclosure Contributors

"""Correctness checks run before a link is created, updated or destroyed.

Each check returns every rule the link breaks rather than stopping at the
first one, so a caller can report all of them in one round trip. Storage is
only read through a ``LinkLookup``; the engine passes a ``LinkSnapshot``
preloaded with the rows around the edge being changed.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Iterator
from typing import Protocol
from uuid import UUID

from dagclosure.exceptions import LinkValidationError
from dagclosure.models.link import DagLinkMixin


class LinkViolation(str, enum.Enum):
    """Reasons a link change is rejected.

    ``UNSAFE_DEMOTION`` counts the direct edge as one of the paths: "count 1"
    means the edge is the only path, i.e. a stored ``count`` of zero.
    """

    DUPLICATE = "link already exists between these points"
    OPPOSITE_DIRECTION = "link already exists in the opposite direction"
    SELF_LOOP = "link must start and end in different places"
    DIRECT_WITH_COUNT = "cannot create a direct link with a nonzero count"
    INDIRECT_WITHOUT_COUNT = "cannot create an indirect link with a count less than 1"
    NO_CHANGES = "no changes"
    MANUAL_COUNT_CHANGE = "do not manually change the count value"
    UNSAFE_DEMOTION = "cannot make a direct link with count 1 indirect"
    NOT_DIRECT = "only direct links can be removed"

    def __str__(self) -> str:
        return self.value


class LinkLookup(Protocol):
    def find_link(
        self,
        ancestor_id: UUID,
        descendant_id: UUID,
        scope_id: UUID | None = None,
    ) -> DagLinkMixin | None: ...


class LinkSnapshot:
    """In-memory ``LinkLookup`` over a batch of already-loaded links."""

    def __init__(self, links: Iterable[DagLinkMixin] = ()) -> None:
        self._links: dict[tuple[UUID, UUID, UUID | None], DagLinkMixin] = {}
        for link in links:
            self.add(link)

    def add(self, link: DagLinkMixin) -> None:
        self._links[(link.ancestor_id, link.descendant_id, link.scope_value)] = link

    def discard(self, link: DagLinkMixin) -> None:
        self._links.pop((link.ancestor_id, link.descendant_id, link.scope_value), None)

    def find_link(
        self,
        ancestor_id: UUID,
        descendant_id: UUID,
        scope_id: UUID | None = None,
    ) -> DagLinkMixin | None:
        return self._links.get((ancestor_id, descendant_id, scope_id))

    def __iter__(self) -> Iterator[DagLinkMixin]:
        return iter(self._links.values())

    def __len__(self) -> int:
        return len(self._links)


def create_violations(link: DagLinkMixin, lookup: LinkLookup) -> list[LinkViolation]:
    """Rules for a link that is about to be inserted."""
    violations: list[LinkViolation] = []
    scope_id = link.scope_value
    if lookup.find_link(link.ancestor_id, link.descendant_id, scope_id) is not None:
        violations.append(LinkViolation.DUPLICATE)
    if lookup.find_link(link.descendant_id, link.ancestor_id, scope_id) is not None:
        violations.append(LinkViolation.OPPOSITE_DIRECTION)
    if link.ancestor_id == link.descendant_id:
        violations.append(LinkViolation.SELF_LOOP)
    if link.direct:
        if link.count > 0:
            violations.append(LinkViolation.DIRECT_WITH_COUNT)
    elif link.count < 1:
        violations.append(LinkViolation.INDIRECT_WITHOUT_COUNT)
    return violations


def update_violations(link: DagLinkMixin) -> list[LinkViolation]:
    """Rules for a pending change to a persisted link.

    ``direct`` and ``count`` may not change in the same write: promotion and
    demotion flip ``direct`` only, propagation adjusts ``count`` only. A direct
    link can only be demoted while at least one indirect path still backs it;
    otherwise the edge has to be removed instead.
    """
    violations: list[LinkViolation] = []
    if not link.has_changes():
        violations.append(LinkViolation.NO_CHANGES)
    direct_changed = link.field_changed("direct")
    if direct_changed and link.field_changed("count"):
        violations.append(LinkViolation.MANUAL_COUNT_CHANGE)
    if direct_changed and not link.direct and link.count < 1:
        violations.append(LinkViolation.UNSAFE_DEMOTION)
    return violations


def destroy_violations(link: DagLinkMixin) -> list[LinkViolation]:
    """Only edges a client added can be removed; derived links follow them."""
    if not link.direct:
        return [LinkViolation.NOT_DIRECT]
    return []


def raise_for_violations(violations: list[LinkViolation]) -> None:
    if violations:
        raise LinkValidationError(violations)
