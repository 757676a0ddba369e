# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
kvsnap CLI - Administrative commands against a backup container.

Entry point: ``kvsnap`` (configured via pyproject.toml scripts).

Storage options go before the command and fall back to the same
environment variables the library reads:

    kvsnap --storage-type S3 --bucket kv-backups --prefix prod list
    kvsnap --container backups --account-name acct --account-key ... sas
"""

import asyncio
import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from pathlib import Path
from typing import Any, Awaitable, Optional, TypeVar

import structlog
import typer

from kvsnap.config import ABSSpec, BackupSpec, S3Spec, ScheduleSpec, Settings, StorageType
from kvsnap.dispatcher import Dispatcher, resolve_storage_type
from kvsnap.env import settings_from_env
from kvsnap.errors import explain_missing_env
from kvsnap.exceptions import ConfigurationError, KVSnapError
from kvsnap.keyspace import list_backups
from kvsnap.retention import purge
from kvsnap.snapshot import FileSnapshotSource
from kvsnap.storage.abs import DEFAULT_SAS_EXPIRY, generate_sas_token, normalize_sas_token

T = TypeVar("T")

app = typer.Typer(
    name="kvsnap",
    help="kvsnap: chunked, retained backups of key-value store snapshots.",
    no_args_is_help=True,
    add_completion=False,
)


def _stderr_logger(*args: Any) -> structlog.PrintLogger:
    # Resolved per logger so a redirected stderr is honored
    return structlog.PrintLogger(sys.stderr)


def configure_logging(verbose: bool = False) -> None:
    """Send human-readable structlog output to stderr."""
    level = logging.DEBUG if verbose else logging.INFO
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=_stderr_logger,
        cache_logger_on_first_use=False,
    )


@dataclass
class StorageOptions:
    """Storage flags shared by every command."""

    storage_type: str | None = None
    container: str | None = None
    account_name: str | None = None
    account_key: str | None = None
    sas_token: str | None = None
    bucket: str | None = None
    region: str = "us-east-1"
    endpoint_url: str | None = None
    prefix: str = ""

    def to_spec(self, name: str = "cli", max_backups: int = 0) -> BackupSpec:
        """Build a one-shot spec from the flags; validation errors are raised."""
        if not self.storage_type:
            raise ConfigurationError(explain_missing_env("KVSNAP_STORAGE_TYPE"))
        storage_type = resolve_storage_type(self.storage_type)
        schedule = ScheduleSpec(max_backups=max_backups) if max_backups else None

        if storage_type == StorageType.ABS:
            section = ABSSpec(
                container=self.container or "",
                account_name=self.account_name or "",
                account_key=self.account_key,
                sas_token=normalize_sas_token(self.sas_token) if self.sas_token else None,
                prefix=self.prefix,
                endpoint_url=self.endpoint_url,
            )
            return BackupSpec(name=name, storage_type=storage_type, abs=section, schedule=schedule)

        section = S3Spec(
            bucket=self.bucket or "",
            prefix=self.prefix,
            region=self.region,
            endpoint_url=self.endpoint_url,
        )
        return BackupSpec(name=name, storage_type=storage_type, s3=section, schedule=schedule)


def make_dispatcher(settings: Settings) -> Dispatcher:
    return Dispatcher(settings)


def _run(coro: Awaitable[T]) -> T:
    """Run a command coroutine; library errors exit with status 1."""
    try:
        return asyncio.run(coro)
    except (KVSnapError, TimeoutError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)


@app.callback()
def main_callback(
    ctx: typer.Context,
    storage_type: Optional[str] = typer.Option(
        None, "--storage-type", envvar="KVSNAP_STORAGE_TYPE", help="ABS or S3."
    ),
    container: Optional[str] = typer.Option(
        None, "--container", envvar="ABS_CONTAINER", help="Azure container name."
    ),
    account_name: Optional[str] = typer.Option(
        None, "--account-name", envvar="ABS_ACCOUNT_NAME", help="Azure storage account."
    ),
    account_key: Optional[str] = typer.Option(
        None, "--account-key", envvar="ABS_ACCOUNT_KEY", help="Azure account key."
    ),
    sas_token: Optional[str] = typer.Option(
        None, "--sas-token", envvar="ABS_SAS_TOKEN", help="Container SAS token or URI."
    ),
    bucket: Optional[str] = typer.Option(
        None, "--bucket", envvar="S3_BUCKET", help="S3 bucket name."
    ),
    region: str = typer.Option("us-east-1", "--region", envvar="AWS_REGION", help="S3 region."),
    endpoint_url: Optional[str] = typer.Option(
        None, "--endpoint-url", help="Storage endpoint override."
    ),
    prefix: str = typer.Option("", "--prefix", envvar="KVSNAP_PREFIX", help="Logical prefix."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    configure_logging(verbose)
    ctx.obj = StorageOptions(
        storage_type=storage_type,
        container=container,
        account_name=account_name,
        account_key=account_key,
        sas_token=sas_token,
        bucket=bucket,
        region=region,
        endpoint_url=endpoint_url,
        prefix=prefix,
    )


@app.command(name="sas", help="Issue a container SAS token for backup writers.")
def sas_cmd(
    ctx: typer.Context,
    expiry_days: int = typer.Option(
        DEFAULT_SAS_EXPIRY.days, "--expiry-days", help="Token lifetime in days."
    ),
) -> None:
    opts: StorageOptions = ctx.obj
    missing = [
        flag
        for flag, value in (
            ("--container", opts.container),
            ("--account-name", opts.account_name),
            ("--account-key", opts.account_key),
        )
        if not value
    ]
    if missing:
        typer.echo(f"Error: sas requires {', '.join(missing)}", err=True)
        raise typer.Exit(code=1)

    token = generate_sas_token(
        opts.container,
        opts.account_name,
        opts.account_key,
        expiry=datetime.now(UTC) + timedelta(days=expiry_days),
    )
    typer.echo(token)


@app.command(name="list", help="List backups under the prefix with their sizes.")
def list_cmd(ctx: typer.Context) -> None:
    opts: StorageOptions = ctx.obj

    async def _list():
        dispatcher = make_dispatcher(settings_from_env())
        try:
            backend = await dispatcher.backend_for(opts.to_spec())
            return await list_backups(backend, dispatcher.keyspace, opts.prefix)
        finally:
            await dispatcher.shutdown()

    entries = _run(_list())
    for entry in entries:
        typer.echo(f"{entry.name}\t{entry.size}")
    typer.echo(f"total: {sum(e.size for e in entries)} bytes in {len(entries)} backups")


@app.command(name="purge", help="Delete the oldest backups beyond --max-backups.")
def purge_cmd(
    ctx: typer.Context,
    max_backups: int = typer.Option(..., "--max-backups", help="Backups to keep."),
) -> None:
    opts: StorageOptions = ctx.obj

    async def _purge():
        dispatcher = make_dispatcher(settings_from_env())
        try:
            backend = await dispatcher.backend_for(opts.to_spec())
            return await purge(backend, dispatcher.keyspace, opts.prefix, max_backups)
        finally:
            await dispatcher.shutdown()

    result = _run(_purge())
    for name in result.deleted:
        typer.echo(f"deleted {name}")
    typer.echo(f"deleted {len(result.deleted)}, retained {len(result.retained)}")


@app.command(name="backup", help="Upload a snapshot file once, then apply retention.")
def backup_cmd(
    ctx: typer.Context,
    snapshot: Path = typer.Argument(..., exists=True, dir_okay=False, help="Snapshot file."),
    max_backups: int = typer.Option(0, "--max-backups", help="Backups to keep (0 keeps all)."),
    compress: Optional[bool] = typer.Option(
        None, "--compress/--no-compress", help="Stream through zstd before upload."
    ),
) -> None:
    opts: StorageOptions = ctx.obj

    async def _backup():
        settings = settings_from_env()
        if compress is not None:
            settings = settings.with_updates(compress=compress)
        dispatcher = make_dispatcher(settings)
        try:
            spec = opts.to_spec(max_backups=max_backups)
            return await asyncio.wait_for(
                dispatcher.handle_backup(spec, FileSnapshotSource(snapshot)),
                timeout=settings.cycle_timeout_seconds,
            )
        finally:
            await dispatcher.shutdown()

    result = _run(_backup())
    typer.echo(f"{result.key}\t{result.size}")
    for name in result.purged:
        typer.echo(f"purged {name}")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
