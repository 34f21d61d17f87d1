"""Fleet backends -- the process-management systems the assistant drives.

Public API::

    from fleetpilot.fleet import (
        FleetBackend,
        HealthWatcher,
        InMemoryFleet,
        LogEntry,
        LogLevel,
        LogQuery,
        Pm2Fleet,
        Target,
        TargetStatus,
    )
"""

from fleetpilot.fleet.base import FleetBackend
from fleetpilot.fleet.memory import InMemoryFleet
from fleetpilot.fleet.models import LogEntry, LogLevel, LogQuery, Target, TargetStatus
from fleetpilot.fleet.pm2 import Pm2Fleet
from fleetpilot.fleet.watcher import HealthWatcher

__all__ = [
    "FleetBackend",
    "HealthWatcher",
    "InMemoryFleet",
    "LogEntry",
    "LogLevel",
    "LogQuery",
    "Pm2Fleet",
    "Target",
    "TargetStatus",
]
