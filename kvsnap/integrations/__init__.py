# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Framework Integrations - FastAPI admin routes and lifespan.
"""

from kvsnap.integrations.fastapi import (
    get_dispatcher,
    kvsnap_lifespan,
    register_kvsnap_routes,
    verify_api_key,
)

__all__ = [
    "get_dispatcher",
    "kvsnap_lifespan",
    "register_kvsnap_routes",
    "verify_api_key",
]
