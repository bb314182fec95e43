# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2026 dagclosure Contributors

"""Errors raised by the closure library.

Validation failures are collected and raised together as a
``LinkValidationError``. The remaining errors signal defects (bad link-type
configuration, writes to protected fields, a corrupted closure) and abort the
enclosing transaction.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dagclosure.closure.validators import LinkViolation


class DagError(Exception):
    """Base class for all dagclosure errors."""


class LinkValidationError(DagError):
    """A create, update or destroy request broke one or more closure rules."""

    def __init__(self, reasons: Iterable[LinkViolation]) -> None:
        self.reasons = list(reasons)
        super().__init__("; ".join(str(r) for r in self.reasons))

    @property
    def messages(self) -> list[str]:
        return [str(r) for r in self.reasons]


class LinkNotFoundError(DagError):
    """No link exists between the requested points."""


class ProtectedFieldViolation(DagError):
    """An internal or immutable link field was assigned from outside the engine."""


class ConfigurationError(DagError):
    """A link class or node-side accessor is declared incorrectly."""


class ClosureIntegrityError(DagError):
    """The stored closure disagrees with what propagation expects to find."""


class PropagationLimitExceeded(DagError):
    """A single edge change would touch more closure pairs than allowed."""

    def __init__(self, pairs: int, limit: int) -> None:
        self.pairs = pairs
        self.limit = limit
        super().__init__(
            f"Propagation would touch {pairs} ancestor/descendant pairs "
            f"(limit {limit})"
        )
