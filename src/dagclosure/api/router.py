# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2026 dagclosure Contributors

from fastapi import APIRouter

from dagclosure.api.links import router as links_router
from dagclosure.api.nodes import router as nodes_router

v1_router = APIRouter()
v1_router.include_router(nodes_router)
v1_router.include_router(links_router)
