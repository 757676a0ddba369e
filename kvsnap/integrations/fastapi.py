# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
kvsnap FastAPI Integration - Admin endpoints and lifespan for FastAPI apps.

This module provides:
- Lifespan management (activate specs on startup, stop schedules on shutdown)
- Protected admin endpoints to inspect, trigger and cancel schedules
- Health check based on the last outcome of every schedule
"""

import os
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime, UTC
from typing import Sequence, Tuple

import structlog
from fastapi import Depends, FastAPI, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from kvsnap.config import BackupSpec
from kvsnap.core import BackupResult
from kvsnap.dispatcher import Dispatcher
from kvsnap.exceptions import ConfigurationError, KVSnapError, error_kind
from kvsnap.scheduler import CycleInProgress
from kvsnap.snapshot import SnapshotSource

logger = structlog.get_logger()

# Security
security = HTTPBearer(auto_error=False)

Activation = Tuple[BackupSpec, SnapshotSource]


async def verify_api_key(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> bool:
    """
    Verify API key from Authorization header.

    The API key is read from the KVSNAP_ADMIN_API_KEY environment variable.
    Requests must include: Authorization: Bearer <api_key>

    Raises:
        HTTPException: If API key is missing or invalid
    """
    api_key = os.getenv("KVSNAP_ADMIN_API_KEY")

    if not api_key:
        raise HTTPException(
            status_code=500,
            detail="KVSNAP_ADMIN_API_KEY environment variable not set",
        )

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Authorization header required",
        )

    if credentials.credentials != api_key:
        raise HTTPException(
            status_code=403,
            detail="Invalid API key",
        )

    return True


def _result_dict(result: BackupResult) -> dict:
    data = asdict(result)
    data["started_at"] = result.started_at.isoformat()
    return data


def register_kvsnap_routes(
    app: FastAPI,
    dispatcher: Dispatcher,
    prefix: str = "/admin/kvsnap",
) -> None:
    """
    Register kvsnap admin endpoints on a FastAPI app.

    All endpoints require Bearer token authentication.

    Args:
        app: FastAPI application
        dispatcher: Dispatcher owning the schedules
        prefix: URL prefix for endpoints (default: /admin/kvsnap)
    """

    @app.get(f"{prefix}/schedules", dependencies=[Depends(verify_api_key)])
    async def list_schedules() -> list:
        """List every active schedule with its last outcome."""
        return [s.to_dict() for s in dispatcher.statuses()]

    @app.get(f"{prefix}/schedules/{{name}}", dependencies=[Depends(verify_api_key)])
    async def get_schedule(name: str) -> dict:
        scheduler = dispatcher.registry.get(name)
        if scheduler is None:
            raise HTTPException(status_code=404, detail=f"Unknown schedule: {name}")
        return scheduler.status.to_dict()

    @app.post(f"{prefix}/schedules/{{name}}/run", dependencies=[Depends(verify_api_key)])
    async def run_schedule(name: str) -> dict:
        """
        Run one extra backup cycle now.

        Returns the backup result. A failed cycle answers 502 with the
        error kind; a cycle already in flight answers 409.
        """
        try:
            result = await dispatcher.run_now(name)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Unknown schedule: {name}")
        except CycleInProgress as e:
            raise HTTPException(status_code=409, detail=str(e))
        except (KVSnapError, TimeoutError) as e:
            raise HTTPException(
                status_code=502,
                detail={"kind": error_kind(e).value, "message": str(e)},
            )
        return _result_dict(result)

    @app.delete(f"{prefix}/schedules/{{name}}", dependencies=[Depends(verify_api_key)])
    async def cancel_schedule(name: str) -> dict:
        """Stop a schedule and wait for its in-flight cycle to end."""
        if not await dispatcher.cancel(name):
            raise HTTPException(status_code=404, detail=f"Unknown schedule: {name}")
        return {"name": name, "cancelled": True}

    @app.get(f"{prefix}/health", dependencies=[Depends(verify_api_key)])
    async def health_check() -> dict:
        """
        Health check endpoint.

        Degraded when the last cycle of any schedule failed.
        """
        statuses = dispatcher.statuses()
        failing = [s.name for s in statuses if s.last_outcome == "failed"]

        return {
            "status": "degraded" if failing else "healthy",
            "schedules": len(statuses),
            "failing": failing,
            "timestamp": datetime.now(UTC).isoformat(),
        }


@asynccontextmanager
async def kvsnap_lifespan(
    app: FastAPI,
    dispatcher: Dispatcher,
    activations: Sequence[Activation] = (),
    prefix: str = "/admin/kvsnap",
):
    """
    Lifespan context manager for FastAPI.

        app = FastAPI(lifespan=lambda app: kvsnap_lifespan(app, dispatcher, [(spec, source)]))

    Every activation runs its first cycle during startup. A failed first
    cycle is logged and its schedule keeps running; a configuration error
    leaves that spec inactive.

    Args:
        app: FastAPI application
        dispatcher: Dispatcher owning the schedules
        activations: (spec, snapshot source) pairs to activate
        prefix: URL prefix for admin endpoints
    """
    logger.info("kvsnap_lifespan_starting", activations=len(activations))

    app.state.kvsnap_dispatcher = dispatcher
    register_kvsnap_routes(app, dispatcher, prefix)

    for spec, source in activations:
        try:
            await dispatcher.handle(spec, source)
        except ConfigurationError as e:
            logger.error("backup_activation_rejected", name=spec.name, error=str(e))
        except (KVSnapError, TimeoutError) as e:
            logger.error(
                "backup_first_cycle_failed",
                name=spec.name,
                kind=error_kind(e).value,
                error=str(e),
            )

    logger.info("kvsnap_lifespan_started", schedules=len(dispatcher.registry))

    try:
        yield
    finally:
        logger.info("kvsnap_lifespan_stopping")
        await dispatcher.shutdown()
        logger.info("kvsnap_lifespan_stopped")


def get_dispatcher(app: FastAPI) -> Dispatcher:
    """
    Get the kvsnap dispatcher from a FastAPI app.

    Useful for accessing schedules in custom endpoints.

    Raises:
        RuntimeError: If kvsnap not initialized
    """
    dispatcher = getattr(app.state, "kvsnap_dispatcher", None)
    if dispatcher is None:
        raise RuntimeError("kvsnap not initialized. Use kvsnap_lifespan first.")
    return dispatcher
