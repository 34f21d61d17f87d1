"""Data models describing managed targets and their log output."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class TargetStatus(str, Enum):
    ONLINE = "online"
    STOPPED = "stopped"
    STOPPING = "stopping"
    LAUNCHING = "launching"
    ERRORED = "errored"
    UNKNOWN = "unknown"


class Target(BaseModel):
    """One managed process as reported by the fleet backend.

    Attributes:
        name: Unique process name.
        status: Lifecycle status.
        pid: OS process id, ``None`` when not running.
        cpu: CPU usage in percent.
        memory: Resident memory in bytes.
        started_at: Epoch milliseconds of the last start, if running.
        restarts: Number of restarts performed by the supervisor.
        unstable_restarts: Restarts that happened too quickly after a start.
        exec_mode: ``fork`` or ``cluster``.
        instances: Number of instances.
        out_log_path: Path of the stdout log file.
        err_log_path: Path of the stderr log file.
    """

    name: str
    status: TargetStatus = TargetStatus.UNKNOWN
    pid: int | None = None
    cpu: float = 0.0
    memory: int = 0
    started_at: int | None = None
    restarts: int = 0
    unstable_restarts: int = 0
    exec_mode: str = "fork"
    instances: int = 1
    out_log_path: str | None = None
    err_log_path: str | None = None

    @property
    def memory_mb(self) -> float:
        return self.memory / (1024 * 1024)


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class LogEntry(BaseModel):
    """A single log line attributed to a target."""

    timestamp: str
    level: LogLevel = LogLevel.INFO
    message: str
    process: str
    stream: str = "out"  # "out" | "err"


class LogQuery(BaseModel):
    """Parameters of a log fetch."""

    target: str | None = None
    lines: int = Field(default=50, ge=1)
    errors_only: bool = False
