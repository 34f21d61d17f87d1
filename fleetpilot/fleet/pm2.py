"""PM2 fleet backend.

Drives the ``pm2`` command-line tool through asyncio subprocesses:

* ``pm2 jlist`` for snapshots;
* ``pm2 <verb> <name>`` for lifecycle operations;
* ``pm2 logs --json`` for live streaming.

Log tails are read straight from the ``pm_out_log_path`` / ``pm_err_log_path``
files PM2 reports for each process.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
from collections import deque
from collections.abc import AsyncIterator
from datetime import datetime, timezone

import aiofiles

from fleetpilot.fleet.base import FleetBackend
from fleetpilot.fleet.models import LogEntry, LogLevel, LogQuery, Target, TargetStatus
from fleetpilot.utils.exceptions import ExecutionFailureError, FleetUnavailableError
from fleetpilot.utils.logging import get_logger

logger = get_logger("fleet.pm2")

# ``pm2 start --time`` prefixes each line with "YYYY-MM-DDTHH:MM:SS: ".
_TIMESTAMP_PREFIX = re.compile(r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:?\d{2})?):\s?")

_STATUS_MAP = {s.value: s for s in TargetStatus}


class Pm2Fleet(FleetBackend):
    """Fleet backend for a local PM2 daemon.

    Parameters
    ----------
    pm2_bin:
        Name or path of the ``pm2`` executable.
    timeout:
        Seconds to wait for a single ``pm2`` invocation.
    """

    def __init__(self, pm2_bin: str = "pm2", timeout: float = 30.0) -> None:
        self.pm2_bin = pm2_bin
        self.timeout = timeout

    # ----- FleetBackend -----------------------------------------------------

    async def list(self) -> list[Target]:
        raw = await self._run("jlist")
        try:
            data = json.loads(raw or "[]")
        except json.JSONDecodeError as exc:
            raise FleetUnavailableError(f"unparseable 'pm2 jlist' output: {exc}") from exc
        return [self._to_target(item) for item in data if isinstance(item, dict)]

    async def start(self, name: str) -> None:
        await self._lifecycle("start", name)

    async def stop(self, name: str) -> None:
        await self._lifecycle("stop", name)

    async def restart(self, name: str) -> None:
        await self._lifecycle("restart", name)

    async def reload(self, name: str) -> None:
        await self._lifecycle("reload", name)

    async def delete(self, name: str) -> None:
        await self._lifecycle("delete", name)

    async def describe(self, name: str) -> list[Target]:
        return [t for t in await self.list() if t.name == name]

    async def logs(self, query: LogQuery) -> list[LogEntry]:
        targets = await self.list()
        if query.target is not None:
            targets = [t for t in targets if t.name == query.target]

        entries: list[LogEntry] = []
        for target in targets:
            if not query.errors_only and target.out_log_path:
                entries.extend(await self._tail(target.name, target.out_log_path, "out", query.lines))
            if target.err_log_path:
                entries.extend(await self._tail(target.name, target.err_log_path, "err", query.lines))
        entries.sort(key=lambda e: e.timestamp)
        return entries[-query.lines:]

    async def save(self) -> None:
        await self._run("save")

    async def stream_logs(self, target: str | None = None) -> AsyncIterator[LogEntry]:
        args = ["logs", "--json", "--lines", "0"]
        if target:
            args.insert(1, target)
        proc = await asyncio.create_subprocess_exec(
            self.pm2_bin, *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        if proc.stdout is None:
            proc.terminate()
            raise FleetUnavailableError("pm2 logs produced no output stream")
        try:
            async for raw_line in proc.stdout:
                entry = self._parse_stream_line(raw_line.decode(errors="replace"))
                if entry is not None:
                    yield entry
        finally:
            if proc.returncode is None:
                proc.terminate()
                await proc.wait()

    # ----- subprocess plumbing -----------------------------------------------

    async def _lifecycle(self, verb: str, name: str) -> None:
        try:
            await self._run(verb, name)
        except FleetUnavailableError as exc:
            raise ExecutionFailureError(verb, name, str(exc)) from exc
        logger.info("pm2_lifecycle", verb=verb, target=name)

    async def _run(self, *args: str) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.pm2_bin, *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise FleetUnavailableError(f"'{self.pm2_bin}' executable not found") from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise FleetUnavailableError(f"'pm2 {' '.join(args)}' timed out") from exc

        if proc.returncode != 0:
            detail = stderr.decode(errors="replace").strip() or f"exit code {proc.returncode}"
            logger.error("pm2_command_failed", args=list(args), detail=detail)
            raise FleetUnavailableError(detail)
        return stdout.decode(errors="replace")

    # ----- parsing -------------------------------------------------------------

    @staticmethod
    def _to_target(item: dict) -> Target:
        env = item.get("pm2_env") or {}
        monit = item.get("monit") or {}
        status = _STATUS_MAP.get(str(env.get("status", "")), TargetStatus.UNKNOWN)
        pid = item.get("pid") or None
        instances = env.get("instances")
        return Target(
            name=str(item.get("name", env.get("name", "unknown"))),
            status=status,
            pid=pid if isinstance(pid, int) and pid > 0 else None,
            cpu=float(monit.get("cpu") or 0),
            memory=int(monit.get("memory") or 0),
            started_at=env.get("pm_uptime") if status == TargetStatus.ONLINE else None,
            restarts=int(env.get("restart_time") or 0),
            unstable_restarts=int(env.get("unstable_restarts") or 0),
            exec_mode=str(env.get("exec_mode") or "fork").replace("_mode", ""),
            instances=instances if isinstance(instances, int) and instances > 0 else 1,
            out_log_path=env.get("pm_out_log_path"),
            err_log_path=env.get("pm_err_log_path"),
        )

    @staticmethod
    async def _tail(process: str, path: str, stream: str, lines: int) -> list[LogEntry]:
        if not os.path.exists(path):
            return []
        fallback_ts = datetime.fromtimestamp(os.path.getmtime(path), tz=timezone.utc).isoformat()
        tail: deque[str] = deque(maxlen=lines)
        async with aiofiles.open(path, mode="r", errors="replace") as fh:
            async for line in fh:
                if line.strip():
                    tail.append(line.rstrip("\n"))

        entries = []
        for line in tail:
            timestamp = fallback_ts
            match = _TIMESTAMP_PREFIX.match(line)
            if match:
                timestamp = match.group(1)
                line = line[match.end():]
            entries.append(LogEntry(
                timestamp=timestamp,
                level=LogLevel.ERROR if stream == "err" else LogLevel.INFO,
                message=line,
                process=process,
                stream=stream,
            ))
        return entries

    @staticmethod
    def _parse_stream_line(line: str) -> LogEntry | None:
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            return None
        if not isinstance(data, dict) or "message" not in data:
            return None
        stream = "err" if data.get("type") == "err" else "out"
        process_info = data.get("process")
        if not isinstance(process_info, dict):
            process_info = {}
        return LogEntry(
            timestamp=str(data.get("timestamp") or datetime.now(timezone.utc).isoformat()),
            level=LogLevel.ERROR if stream == "err" else LogLevel.INFO,
            message=str(data["message"]).rstrip("\n"),
            process=str(data.get("app_name") or process_info.get("name", "unknown")),
            stream=stream,
        )
