"""Abstract base class for fleet backends.

A fleet backend is the process-management system that actually starts,
stops and restarts targets.  It is authoritative for whether a target
exists; failures of a specific operation raise
:class:`~fleetpilot.utils.exceptions.ExecutionFailureError` and an
unreachable backend raises
:class:`~fleetpilot.utils.exceptions.FleetUnavailableError`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from fleetpilot.fleet.models import LogEntry, LogQuery, Target


class FleetBackend(ABC):
    """Interface every fleet backend must implement."""

    @abstractmethod
    async def list(self) -> list[Target]:
        """Return a fresh snapshot of every managed target."""
        ...

    @abstractmethod
    async def start(self, name: str) -> None:
        ...

    @abstractmethod
    async def stop(self, name: str) -> None:
        ...

    @abstractmethod
    async def restart(self, name: str) -> None:
        ...

    @abstractmethod
    async def reload(self, name: str) -> None:
        ...

    @abstractmethod
    async def delete(self, name: str) -> None:
        ...

    @abstractmethod
    async def describe(self, name: str) -> list[Target]:
        """Return every instance registered under *name* (empty if unknown)."""
        ...

    @abstractmethod
    async def logs(self, query: LogQuery) -> list[LogEntry]:
        """Return recent log entries, oldest first."""
        ...

    @abstractmethod
    async def save(self) -> None:
        """Persist the current process list so it survives a supervisor restart."""
        ...

    @abstractmethod
    def stream_logs(self, target: str | None = None) -> AsyncIterator[LogEntry]:
        """Yield log entries as they are produced."""
        ...

    async def error_logs(self, target: str | None = None, lines: int = 50) -> list[LogEntry]:
        """Convenience wrapper for an errors-only :meth:`logs` query."""
        return await self.logs(LogQuery(target=target, lines=lines, errors_only=True))

    async def target_names(self) -> list[str]:
        return [t.name for t in await self.list()]
