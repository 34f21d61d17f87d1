"""In-process fleet backend.

Keeps targets and log lines in memory and records every mutating call, so
tests and demos can drive the assistant without a real supervisor.
Failures can be injected per target and verb.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from datetime import datetime, timezone

from fleetpilot.fleet.base import FleetBackend
from fleetpilot.fleet.models import LogEntry, LogLevel, LogQuery, Target, TargetStatus
from fleetpilot.utils.exceptions import ExecutionFailureError, FleetUnavailableError


class InMemoryFleet(FleetBackend):
    """Fleet backend backed by plain Python data structures.

    Parameters
    ----------
    targets:
        Initial targets; plain names are turned into online targets.
    """

    def __init__(self, targets: list[Target | str] | None = None) -> None:
        self.targets: dict[str, Target] = {}
        for item in targets or []:
            target = item if isinstance(item, Target) else Target(
                name=item, status=TargetStatus.ONLINE, pid=1000 + len(self.targets),
            )
            self.targets[target.name] = target
        self.log_entries: list[LogEntry] = []
        self.calls: list[tuple[str, str]] = []
        self.failures: dict[tuple[str, str], str] = {}
        self.unavailable = False
        self.saved = False
        self._subscribers: list[tuple[str | None, asyncio.Queue]] = []

    # ----- test helpers -----------------------------------------------------

    def fail(self, verb: str, name: str, detail: str = "simulated failure") -> None:
        """Make the next and every later ``verb`` on *name* raise."""
        self.failures[(verb, name)] = detail

    def calls_for(self, verb: str) -> list[str]:
        return [name for v, name in self.calls if v == verb]

    def emit_log(
        self,
        process: str,
        message: str,
        level: LogLevel = LogLevel.INFO,
    ) -> LogEntry:
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=level,
            message=message,
            process=process,
            stream="err" if level == LogLevel.ERROR else "out",
        )
        self.log_entries.append(entry)
        for wanted, queue in self._subscribers:
            if wanted is None or wanted == process:
                queue.put_nowait(entry)
        return entry

    # ----- FleetBackend -----------------------------------------------------

    async def list(self) -> list[Target]:
        self._check_available()
        return [t.model_copy() for t in self.targets.values()]

    async def start(self, name: str) -> None:
        target = self._mutate("start", name)
        target.status = TargetStatus.ONLINE
        target.started_at = int(time.time() * 1000)

    async def stop(self, name: str) -> None:
        target = self._mutate("stop", name)
        target.status = TargetStatus.STOPPED
        target.pid = None
        target.cpu = 0.0

    async def restart(self, name: str) -> None:
        target = self._mutate("restart", name)
        target.status = TargetStatus.ONLINE
        target.restarts += 1
        target.started_at = int(time.time() * 1000)

    async def reload(self, name: str) -> None:
        target = self._mutate("reload", name)
        target.status = TargetStatus.ONLINE

    async def delete(self, name: str) -> None:
        self._mutate("delete", name)
        del self.targets[name]

    async def describe(self, name: str) -> list[Target]:
        self._check_available()
        target = self.targets.get(name)
        return [target.model_copy()] if target else []

    async def logs(self, query: LogQuery) -> list[LogEntry]:
        self._check_available()
        entries = [
            e for e in self.log_entries
            if (query.target is None or e.process == query.target)
            and (not query.errors_only or e.level == LogLevel.ERROR)
        ]
        return entries[-query.lines:]

    async def save(self) -> None:
        self._check_available()
        self.calls.append(("save", ""))
        self.saved = True

    async def stream_logs(self, target: str | None = None) -> AsyncIterator[LogEntry]:
        queue: asyncio.Queue = asyncio.Queue()
        subscription = (target, queue)
        self._subscribers.append(subscription)
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers.remove(subscription)

    # ----- internals ----------------------------------------------------------

    def _check_available(self) -> None:
        if self.unavailable:
            raise FleetUnavailableError("in-memory fleet marked unavailable")

    def _mutate(self, verb: str, name: str) -> Target:
        self._check_available()
        self.calls.append((verb, name))
        if (verb, name) in self.failures:
            raise ExecutionFailureError(verb, name, self.failures[(verb, name)])
        target = self.targets.get(name)
        if target is None:
            raise ExecutionFailureError(verb, name, f"process or namespace {name} not found")
        return target
