# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
kvsnap Dispatcher - Routes backup specs to storage backends and schedules.

The dispatcher resolves a spec's storage type to a backend factory (one
entry per supported backend; adding a backend means adding an entry), runs
backup cycles with a bounded retry on transient failures, and owns the
registry of recurring schedules.
"""

import asyncio
from typing import Any, Callable, Dict, Mapping, Tuple

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from kvsnap.config import ABSSpec, BackupSpec, S3Spec, Settings, StorageType
from kvsnap.core import BackupResult, run_backup_cycle
from kvsnap.errors import explain_missing_storage_section, explain_unknown_storage_type
from kvsnap.exceptions import (
    BackendUnavailable,
    ConfigurationError,
    ErrorKind,
    UploadIncomplete,
)
from kvsnap.keyspace import KeySpace
from kvsnap.registry import ScheduleRegistry
from kvsnap.scheduler import BackupScheduler, ScheduleStatus
from kvsnap.snapshot import SnapshotSource
from kvsnap.storage import StorageBackend
from kvsnap.storage.abs import AzureBlobBackend
from kvsnap.storage.s3 import S3Backend

logger = structlog.get_logger()

BackendFactory = Callable[[Any], StorageBackend]

DEFAULT_BACKEND_FACTORIES: Dict[StorageType, BackendFactory] = {
    StorageType.ABS: AzureBlobBackend.from_spec,
    StorageType.S3: S3Backend.from_spec,
}

# Upper bound for a single backoff sleep
MAX_RETRY_WAIT_SECONDS = 30.0

# Causes that a retry cannot fix
_PERMANENT_CAUSES = {ErrorKind.CONFIG.value, ErrorKind.BACKEND_AUTH_FAILED.value}


def resolve_storage_type(value: StorageType | str) -> StorageType:
    """
    Normalize a declared storage type.

    Raises:
        ConfigurationError: the value is not a supported backend
    """
    if isinstance(value, StorageType):
        return value
    try:
        return StorageType(str(value).upper())
    except ValueError as e:
        raise ConfigurationError(
            explain_unknown_storage_type(value),
            details={"storage_type": value},
        ) from e


def storage_section(spec: BackupSpec) -> Tuple[StorageType, ABSSpec | S3Spec]:
    """Return the storage type and the backend section it selects."""
    storage_type = resolve_storage_type(spec.storage_type)
    section = spec.abs if storage_type == StorageType.ABS else spec.s3
    if section is None:
        raise ConfigurationError(
            explain_missing_storage_section(storage_type.value),
            details={"name": spec.name},
        )
    return storage_type, section


def is_retryable(exc: BaseException) -> bool:
    """Transient failures worth another attempt within the same cycle."""
    if isinstance(exc, BackendUnavailable):
        return True
    if isinstance(exc, UploadIncomplete):
        return exc.details.get("cause") not in _PERMANENT_CAUSES
    return False


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "backup_cycle_retry",
        attempt=retry_state.attempt_number,
        error=str(exc),
    )


class Dispatcher:
    """
    Entry point for running and scheduling backups.

    Example:
        dispatcher = Dispatcher(Settings())
        result = await dispatcher.handle(spec, FileSnapshotSource("/snap.db"))
        ...
        await dispatcher.shutdown()
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        registry: ScheduleRegistry | None = None,
        backend_factories: Mapping[StorageType, BackendFactory] | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.keyspace = KeySpace(self.settings.namespace_version)
        self.registry = registry if registry is not None else ScheduleRegistry()
        self._factories = dict(
            DEFAULT_BACKEND_FACTORIES if backend_factories is None else backend_factories
        )
        # name -> (section the backend was built from, backend)
        self._backends: Dict[str, Tuple[Any, StorageBackend]] = {}

    async def backend_for(self, spec: BackupSpec) -> StorageBackend:
        """
        Return the backend for a spec, building it on first use.

        A backend is reused for as long as the spec's storage section is
        unchanged.

        Raises:
            ConfigurationError: unknown storage type, missing section or no
                factory registered for the type
        """
        storage_type, section = storage_section(spec)
        cached = self._backends.get(spec.name)
        if cached is not None and cached[0] == section:
            return cached[1]

        factory = self._factories.get(storage_type)
        if factory is None:
            raise ConfigurationError(
                explain_unknown_storage_type(storage_type.value),
                details={"name": spec.name},
            )

        backend = factory(section)
        self._backends[spec.name] = (section, backend)
        if cached is not None:
            await cached[1].close()
        logger.debug("backend_created", name=spec.name, backend=backend.name)
        return backend

    async def handle_backup(self, spec: BackupSpec, source: SnapshotSource) -> BackupResult:
        """
        Run one backup cycle for a spec.

        Transient backend failures are retried with exponential backoff up
        to settings.retry_attempts attempts; each attempt re-opens the
        snapshot source.
        """
        backend = await self.backend_for(spec)
        _, section = storage_section(spec)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.retry_attempts),
            wait=wait_exponential(
                multiplier=self.settings.retry_backoff_seconds,
                max=MAX_RETRY_WAIT_SECONDS,
            ),
            retry=retry_if_exception(is_retryable),
            before_sleep=_log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result = await run_backup_cycle(
                    backend,
                    self.keyspace,
                    source,
                    prefix=section.prefix,
                    max_backups=spec.max_backups,
                    settings=self.settings,
                    name=spec.name,
                )
        return result

    async def handle(self, spec: BackupSpec, source: SnapshotSource) -> BackupResult:
        """
        Activate a backup spec.

        Runs the first cycle immediately and returns its result (or raises
        its error). When the spec carries a recurring schedule, the
        schedule keeps running after a failed first cycle, except for
        configuration errors, which abort activation.

        Args:
            spec: Backup spec to activate
            source: Snapshot source opened once per cycle

        Returns:
            BackupResult of the first cycle
        """
        # Configuration problems surface before anything is written
        _, section = storage_section(spec)
        cached = self._backends.get(spec.name)
        previous = self.registry.get(spec.name)
        if previous is not None and cached is not None and cached[0] != section:
            # Its in-flight cycle still uses the backend about to be closed
            await previous.stop()
        await self.backend_for(spec)

        schedule = spec.schedule
        if schedule is None or not schedule.recurring:
            logger.info("backup_one_shot", name=spec.name)
            return await asyncio.wait_for(
                self.handle_backup(spec, source),
                timeout=self.settings.cycle_timeout_seconds,
            )

        scheduler = BackupScheduler(
            spec.name,
            lambda: self.handle_backup(spec, source),
            interval_seconds=schedule.interval_seconds,
            min_interval_seconds=self.settings.min_interval_seconds,
            cycle_timeout_seconds=self.settings.cycle_timeout_seconds,
        )
        await self.registry.add(scheduler)

        try:
            result = await scheduler.run_once()
        except ConfigurationError:
            await self.registry.remove(spec.name)
            raise
        except Exception:
            scheduler.start()
            raise
        scheduler.start()
        return result

    async def run_now(self, name: str) -> BackupResult:
        """
        Run an extra cycle of a registered schedule.

        Raises:
            KeyError: no schedule with that name
            CycleInProgress: the schedule is already running a cycle
        """
        scheduler = self.registry.get(name)
        if scheduler is None:
            raise KeyError(name)
        return await scheduler.run_once()

    async def cancel(self, name: str) -> bool:
        """Stop a schedule; True if it was registered."""
        return await self.registry.remove(name)

    def statuses(self) -> list[ScheduleStatus]:
        return self.registry.statuses()

    async def shutdown(self) -> None:
        """Stop every schedule, then close every backend."""
        await self.registry.shutdown()
        backends = [b for _, b in self._backends.values()]
        self._backends.clear()
        for backend in backends:
            await backend.close()
        logger.info("dispatcher_shutdown", backends=len(backends))
