#!/usr/bin/env python3
# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2026 dagclosure Contributors
"""Seed a running dagclosure service with a small demo taxonomy.

Usage:
    python scripts/seed.py                                # defaults to http://localhost:8000
    python scripts/seed.py --base-url http://localhost:8000 --scope-id <uuid>
"""

from __future__ import annotations

import argparse
import sys
import uuid

import httpx

DEFAULT_BASE_URL = "http://localhost:8000"
TIMEOUT = 30.0

# ---------------------------------------------------------------------------
# Seed data definitions
# ---------------------------------------------------------------------------

NODES = [
    "organism",
    "animal",
    "plant",
    "mammal",
    "bird",
    "pet",
    "dog",
    "cat",
    "parrot",
    "oak",
]

# (ancestor, descendant); "pet" gives dog, cat and parrot a second path from animal
EDGES = [
    ("organism", "animal"),
    ("organism", "plant"),
    ("animal", "mammal"),
    ("animal", "bird"),
    ("animal", "pet"),
    ("mammal", "dog"),
    ("mammal", "cat"),
    ("bird", "parrot"),
    ("pet", "dog"),
    ("pet", "cat"),
    ("pet", "parrot"),
    ("plant", "oak"),
]


def post(client: httpx.Client, url: str, json: dict) -> dict:
    r = client.post(url, json=json, timeout=TIMEOUT)
    if r.status_code >= 400:
        print(f"  ERROR {r.status_code}: {r.text[:200]}", file=sys.stderr)
        r.raise_for_status()
    return r.json()


def get(client: httpx.Client, url: str, *, params: dict | None = None) -> dict | list:
    r = client.get(url, params=params, timeout=TIMEOUT)
    r.raise_for_status()
    return r.json()


def seed(base_url: str, scope_id: str) -> None:
    base = f"{base_url}/v1"
    client = httpx.Client()

    print("=== Creating nodes ===")
    existing = get(client, f"{base}/nodes", params={"limit": 200})
    node_ids = {n["name"]: n["id"] for n in existing["items"]}
    for name in NODES:
        if name in node_ids:
            print(f"  {name}: {node_ids[name]} (exists)")
            continue
        node_ids[name] = post(client, f"{base}/nodes", {"name": name})["id"]
        print(f"  {name}: {node_ids[name]}")

    print(f"\n=== Adding edges (scope {scope_id}) ===")
    for ancestor, descendant in EDGES:
        payload = {
            "ancestor_id": node_ids[ancestor],
            "descendant_id": node_ids[descendant],
            "scope_id": scope_id,
        }
        r = client.post(f"{base}/links", json=payload, timeout=TIMEOUT)
        if r.status_code == 422:
            print(f"  {ancestor} -> {descendant}: skipped ({', '.join(r.json()['detail'])})")
            continue
        r.raise_for_status()
        print(f"  {ancestor} -> {descendant}")

    links = get(client, f"{base}/links", params={"scope_id": scope_id, "limit": 200})
    print("\n=== Closure ===")
    names = {v: k for k, v in node_ids.items()}
    for link in links["items"]:
        kind = "direct" if link["direct"] else "indirect"
        print(
            f"  {names.get(link['ancestor_id'], '?'):>10} -> "
            f"{names.get(link['descendant_id'], '?'):<10} {kind:<8} count={link['count']}"
        )
    print(f"\n  Nodes: {len(NODES)}  Edges: {len(EDGES)}  Links: {links['total']}")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed dagclosure with a demo taxonomy")
    parser.add_argument(
        "--base-url",
        default=DEFAULT_BASE_URL,
        help=f"dagclosure API base URL (default: {DEFAULT_BASE_URL})",
    )
    parser.add_argument(
        "--scope-id",
        default=str(uuid.uuid5(uuid.NAMESPACE_URL, "dagclosure-demo")),
        help="Scope to seed the taxonomy into",
    )
    args = parser.parse_args()
    seed(args.base_url, args.scope_id)
