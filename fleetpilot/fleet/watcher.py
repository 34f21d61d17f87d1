"""Background health polling with automatic recovery.

The :class:`HealthWatcher` periodically inspects watched targets and
restarts those that are errored, stopped, or above their memory threshold.
CPU breaches are only reported.  Restart counters are private to the
watcher; a target that keeps failing is dropped from the watch list once it
reaches ``restart_limit``.

The watcher runs as its own asyncio task and shares nothing with the
conversation state.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass

from fleetpilot.fleet.base import FleetBackend
from fleetpilot.fleet.models import TargetStatus
from fleetpilot.utils.logging import get_logger

logger = get_logger("fleet.watcher")


@dataclass
class WatchConfig:
    """Thresholds for a single watched target."""

    memory_threshold_mb: float = 500.0
    cpu_threshold: float = 80.0


class HealthWatcher:
    """Poll watched targets and recover unhealthy ones.

    Parameters
    ----------
    fleet:
        Backend used for ``describe`` and ``restart``.
    interval:
        Seconds between polls.
    restart_limit:
        Recoveries allowed per target before it is given up on.
    stable_reset:
        Seconds after the last recovery at which the counter resets.
    """

    def __init__(
        self,
        fleet: FleetBackend,
        interval: float = 5.0,
        restart_limit: int = 3,
        stable_reset: float = 60.0,
    ) -> None:
        self.fleet = fleet
        self.interval = interval
        self.restart_limit = restart_limit
        self.stable_reset = stable_reset
        self.watched: dict[str, WatchConfig] = {}
        self.restart_counts: dict[str, int] = {}
        self._last_recovery: dict[str, float] = {}
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def watch(
        self,
        name: str,
        memory_threshold_mb: float = 500.0,
        cpu_threshold: float = 80.0,
    ) -> None:
        self.watched[name] = WatchConfig(memory_threshold_mb, cpu_threshold)
        self.restart_counts[name] = 0
        logger.info(
            "watch_added",
            target=name,
            memory_threshold_mb=memory_threshold_mb,
            cpu_threshold=cpu_threshold,
        )

    def unwatch(self, name: str) -> None:
        self.watched.pop(name, None)
        self.restart_counts.pop(name, None)
        self._last_recovery.pop(name, None)

    def start(self) -> None:
        """Launch the polling task on the running event loop."""
        if not self.running:
            self._task = asyncio.create_task(self._loop())
            logger.info("watch_started", interval=self.interval)

    async def stop(self) -> None:
        """Cancel the polling task and forget every watched target."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.watched.clear()
        self.restart_counts.clear()
        self._last_recovery.clear()
        logger.info("watch_stopped")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.check_once()
            except Exception as exc:
                logger.error("watch_check_error", error=str(exc))

    async def check_once(self) -> None:
        """Inspect every watched target once."""
        for name, config in list(self.watched.items()):
            self._maybe_reset(name)
            await self._check_target(name, config)

    async def _check_target(self, name: str, config: WatchConfig) -> None:
        try:
            found = await self.fleet.describe(name)
        except Exception as exc:
            logger.error("watch_describe_failed", target=name, error=str(exc))
            return

        if not found:
            logger.warning("watch_target_missing", target=name)
            return

        target = found[0]
        if target.status in (TargetStatus.ERRORED, TargetStatus.STOPPED):
            logger.warning("watch_target_down", target=name, status=target.status.value)
            await self._recover(name)
            return

        if target.memory_mb > config.memory_threshold_mb:
            logger.warning(
                "watch_memory_alert",
                target=name,
                memory_mb=round(target.memory_mb, 1),
                threshold=config.memory_threshold_mb,
            )
            await self._recover(name)
            return

        if target.cpu > config.cpu_threshold:
            logger.warning(
                "watch_cpu_alert",
                target=name,
                cpu=target.cpu,
                threshold=config.cpu_threshold,
            )

    async def _recover(self, name: str) -> None:
        count = self.restart_counts.get(name, 0)
        if count >= self.restart_limit:
            logger.critical("watch_restart_limit_reached", target=name, limit=self.restart_limit)
            self.unwatch(name)
            return

        try:
            await self.fleet.restart(name)
        except Exception as exc:
            logger.error("watch_restart_failed", target=name, error=str(exc))
            return

        self.restart_counts[name] = count + 1
        self._last_recovery[name] = time.monotonic()
        logger.info(
            "watch_target_restarted",
            target=name,
            attempt=count + 1,
            limit=self.restart_limit,
        )

    def _maybe_reset(self, name: str) -> None:
        last = self._last_recovery.get(name)
        if last is not None and time.monotonic() - last >= self.stable_reset:
            self.restart_counts[name] = 0
            del self._last_recovery[name]
