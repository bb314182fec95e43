# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2026 dagclosure Contributors

"""Materialized transitive-closure tables for directed acyclic graphs."""

__version__ = "0.1.0"
