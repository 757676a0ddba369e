# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
kvsnap Schedule Registry - Active schedules keyed by backup name.

At most one schedule runs per backup name. Registering a name that is
already active stops the old schedule before the new one takes its place,
so two timers never write to the same prefix.
"""

import asyncio
from typing import Dict, List

import structlog

from kvsnap.scheduler import BackupScheduler, ScheduleStatus

logger = structlog.get_logger()


class ScheduleRegistry:
    """Holds the running schedules of one process."""

    def __init__(self) -> None:
        self._schedules: Dict[str, BackupScheduler] = {}
        self._lock = asyncio.Lock()

    def __contains__(self, name: str) -> bool:
        return name in self._schedules

    def __len__(self) -> int:
        return len(self._schedules)

    def get(self, name: str) -> BackupScheduler | None:
        return self._schedules.get(name)

    def names(self) -> List[str]:
        return sorted(self._schedules)

    async def add(self, scheduler: BackupScheduler) -> None:
        """Register a schedule, stopping any previous one with the same name."""
        async with self._lock:
            previous = self._schedules.get(scheduler.name)
            if previous is not None and previous is not scheduler:
                logger.info("schedule_replaced", schedule=scheduler.name)
                await previous.stop()
            self._schedules[scheduler.name] = scheduler

    async def remove(self, name: str) -> bool:
        """
        Stop and forget a schedule.

        Returns:
            True if a schedule with that name was registered
        """
        async with self._lock:
            scheduler = self._schedules.pop(name, None)
        if scheduler is None:
            return False
        await scheduler.stop()
        return True

    def statuses(self) -> List[ScheduleStatus]:
        return [self._schedules[n].status for n in self.names()]

    async def shutdown(self) -> None:
        """Stop every schedule and wait for all of them."""
        async with self._lock:
            schedulers = list(self._schedules.values())
            self._schedules.clear()
        if schedulers:
            await asyncio.gather(*(s.stop() for s in schedulers))
        logger.info("registry_shutdown", stopped=len(schedulers))
