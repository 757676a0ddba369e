# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Example FastAPI Application with kvsnap Integration.

This example backs up a Redis RDB snapshot file every hour to S3, keeping
the last 24 backups, and exposes the kvsnap admin endpoints.

Run with:
    uvicorn examples.basic_app:app --reload

Environment variables:
    AWS_ACCESS_KEY_ID: AWS access key
    AWS_SECRET_ACCESS_KEY: AWS secret key
    S3_BUCKET: Bucket receiving the backups
    REDIS_DUMP_PATH: Snapshot file to upload (default: /var/lib/redis/dump.rdb)
    KVSNAP_ADMIN_API_KEY: API key for admin endpoints
"""

import os
from pathlib import Path

from fastapi import FastAPI

from kvsnap.builder import build_from_steps, every, keep_last, use_s3, with_name
from kvsnap.dispatcher import Dispatcher
from kvsnap.env import settings_from_env
from kvsnap.integrations.fastapi import get_dispatcher, kvsnap_lifespan
from kvsnap.snapshot import FileSnapshotSource


def create_backup_spec():
    """Hourly backups of the cache cluster, last 24 kept."""
    bucket = os.getenv("S3_BUCKET", "my-app-backups")
    region = os.getenv("AWS_REGION", "us-east-1")

    return build_from_steps(
        lambda s: with_name(s, "redis-cache"),
        lambda s: use_s3(s, bucket, prefix="redis/cache", region=region),
        lambda s: every(s, 3600),
        lambda s: keep_last(s, 24),
    )


dispatcher = Dispatcher(settings_from_env())
snapshot = FileSnapshotSource(Path(os.getenv("REDIS_DUMP_PATH", "/var/lib/redis/dump.rdb")))

app = FastAPI(
    title="My App with kvsnap",
    description="Example application with scheduled key-value store backups",
    version="1.0.0",
    lifespan=lambda app: kvsnap_lifespan(app, dispatcher, [(create_backup_spec(), snapshot)]),
)


@app.get("/")
async def root():
    return {"message": "Hello World", "backups": "/admin/kvsnap/schedules"}


@app.get("/backups/last")
async def last_backup():
    """Last outcome of every schedule, without the admin key."""
    return {
        status.name: {
            "outcome": status.last_outcome,
            "key": status.last_backup_key,
        }
        for status in get_dispatcher(app).statuses()
    }
