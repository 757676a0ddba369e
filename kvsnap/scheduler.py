# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
kvsnap Scheduler - Fixed-interval backup loop with a cancellable task.

Each schedule owns one asyncio task that ticks on a fixed cadence. A tick
starts one backup cycle; a tick that arrives while the previous cycle is
still running is dropped and counted rather than queued. Every cycle runs
under its own deadline, and a failed cycle never stops the loop: the
outcome is recorded in the schedule's status and the next tick retries.

stop() cancels the loop and any in-flight cycle and waits for both to
finish, so shutdown never leaves background work behind.
"""

import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Awaitable, Callable, Dict

import structlog

from kvsnap.core import BackupResult
from kvsnap.exceptions import ConfigurationError, error_kind

logger = structlog.get_logger()

CycleFunc = Callable[[], Awaitable[BackupResult]]


class ScheduleState(str, Enum):
    """Lifecycle state of a schedule."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class CycleInProgress(RuntimeError):
    """Raised when a manual run is requested while a cycle is running."""


@dataclass
class ScheduleStatus:
    """Observable state of one schedule, updated after every cycle."""

    name: str
    interval_seconds: float
    state: ScheduleState = ScheduleState.IDLE
    last_outcome: str | None = None  # "succeeded" | "failed"
    last_error_kind: str | None = None
    last_message: str | None = None
    last_backup_key: str | None = None
    last_started_at: datetime | None = None
    last_finished_at: datetime | None = None
    cycles_succeeded: int = 0
    cycles_failed: int = 0
    ticks_dropped: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        for k in ("last_started_at", "last_finished_at"):
            value = data[k]
            data[k] = value.isoformat() if value else None
        return data


def effective_interval(interval_seconds: float, min_interval_seconds: float) -> float:
    """Clamp an interval to the configured floor."""
    return max(float(interval_seconds), float(min_interval_seconds))


class BackupScheduler:
    """Runs one backup cycle per tick until stopped."""

    def __init__(
        self,
        name: str,
        cycle: CycleFunc,
        *,
        interval_seconds: float,
        min_interval_seconds: float,
        cycle_timeout_seconds: float,
    ) -> None:
        self.name = name
        self.interval = effective_interval(interval_seconds, min_interval_seconds)
        if self.interval <= 0:
            raise ConfigurationError(
                "Schedule interval must be > 0 after applying the floor",
                details={"name": name, "interval_seconds": interval_seconds},
            )
        if self.interval != interval_seconds:
            logger.info(
                "schedule_interval_clamped",
                schedule=name,
                requested=interval_seconds,
                effective=self.interval,
            )

        self.cycle_timeout = cycle_timeout_seconds
        self.status = ScheduleStatus(name=name, interval_seconds=self.interval)
        self._cycle = cycle
        self._loop_task: asyncio.Task | None = None
        self._cycle_task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        """True while the timer loop is active."""
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def busy(self) -> bool:
        """True while a cycle is in flight."""
        return self._cycle_task is not None and not self._cycle_task.done()

    # ------------------------------------------------------------------
    # Cycle execution
    # ------------------------------------------------------------------

    async def _execute(self) -> BackupResult:
        self.status.state = ScheduleState.RUNNING
        self.status.last_started_at = datetime.now(UTC)
        try:
            result = await asyncio.wait_for(self._cycle(), timeout=self.cycle_timeout)
        except asyncio.CancelledError:
            logger.warning("backup_cycle_cancelled", schedule=self.name)
            raise
        except Exception as e:
            self._record_failure(e)
            raise
        else:
            self._record_success(result)
            return result
        finally:
            self.status.last_finished_at = datetime.now(UTC)
            if self.status.state == ScheduleState.RUNNING:
                self.status.state = ScheduleState.IDLE

    def _record_success(self, result: BackupResult) -> None:
        self.status.last_outcome = "succeeded"
        self.status.last_error_kind = None
        self.status.last_message = f"backup {result.backup_id} written ({result.size} bytes)"
        self.status.last_backup_key = result.key
        self.status.cycles_succeeded += 1

    def _record_failure(self, exc: Exception) -> None:
        kind = error_kind(exc)
        message = str(exc) or type(exc).__name__
        if isinstance(exc, TimeoutError):
            message = f"cycle exceeded {self.cycle_timeout}s deadline"
        self.status.last_outcome = "failed"
        self.status.last_error_kind = kind.value
        self.status.last_message = message
        self.status.cycles_failed += 1
        logger.error(
            "backup_cycle_failed",
            schedule=self.name,
            kind=kind.value,
            error=message,
        )

    async def run_once(self) -> BackupResult:
        """
        Run one cycle immediately, outside the timer cadence.

        Raises:
            CycleInProgress: a cycle is already running for this schedule
            The cycle's own exception, after recording it in status
        """
        if self.busy:
            raise CycleInProgress(f"A backup cycle is already running for {self.name}")
        self._cycle_task = asyncio.create_task(self._execute())
        return await self._cycle_task

    # ------------------------------------------------------------------
    # Timer loop
    # ------------------------------------------------------------------

    def start(self, *, initial_delay: float | None = None) -> None:
        """
        Start the timer loop.

        The first tick fires after initial_delay (default: one interval).
        """
        if self.running:
            return
        self.status.state = ScheduleState.IDLE
        delay = self.interval if initial_delay is None else initial_delay
        self._loop_task = asyncio.create_task(
            self._run_loop(delay),
            name=f"kvsnap-schedule-{self.name}",
        )
        logger.info("schedule_started", schedule=self.name, interval=self.interval)

    async def _run_loop(self, initial_delay: float) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + initial_delay
        while True:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            self._tick()
            next_tick += self.interval
            # Ticks missed while the event loop was stalled are dropped too
            now = loop.time()
            while next_tick <= now:
                next_tick += self.interval
                self.status.ticks_dropped += 1

    def _tick(self) -> None:
        if self.busy:
            self.status.ticks_dropped += 1
            logger.warning(
                "tick_dropped",
                schedule=self.name,
                reason="previous cycle still running",
                ticks_dropped=self.status.ticks_dropped,
            )
            return
        self._cycle_task = asyncio.create_task(self._run_tick_cycle())

    async def _run_tick_cycle(self) -> None:
        try:
            await self._execute()
        except Exception:
            # Recorded in status by _execute; the loop carries on
            return

    async def stop(self, timeout: float | None = None) -> None:
        """Cancel the loop and any in-flight cycle, then wait for both."""
        tasks = [t for t in (self._loop_task, self._cycle_task) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=timeout)
            if pending:
                logger.warning("schedule_stop_timeout", schedule=self.name, pending=len(pending))
        self.status.state = ScheduleState.STOPPED
        logger.info("schedule_stopped", schedule=self.name)
