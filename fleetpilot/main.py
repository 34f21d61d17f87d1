"""Minimal interactive loop.

Run with ``python -m fleetpilot.main`` (or the ``fleetpilot`` script).
``/auto on|off`` toggles auto-execute mode, ``/watch <name>`` and
``/unwatch <name>`` manage automatic recovery, ``/quit`` exits.
"""

from __future__ import annotations

import asyncio
import sys

from fleetpilot.config import settings
from fleetpilot.core.execution.response import ExecutionResponse
from fleetpilot.fleet.watcher import HealthWatcher
from fleetpilot.session import AssistantSession, build_session
from fleetpilot.utils.logging import get_logger, setup_logging

PROMPT = "fleet> "


def render(response: ExecutionResponse) -> str:
    lines = [response.message]
    if response.missing_parameters:
        lines.append(f"Missing: {', '.join(response.missing_parameters)}")
    return "\n".join(lines)


def handle_meta(session: AssistantSession, watcher: HealthWatcher, line: str) -> str | None:
    """Handle a ``/`` command; returns the reply, or ``None`` for ``/quit``."""
    parts = line.split()
    if parts[0] in ("/quit", "/exit"):
        return None
    if parts[0] == "/auto":
        if len(parts) > 1 and parts[1] in ("on", "off"):
            session.auto_mode = parts[1] == "on"
        return f"Auto-execute mode: {'on' if session.auto_mode else 'off'}"
    if parts[0] == "/watch" and len(parts) > 1:
        watcher.watch(parts[1])
        return f"Watching {parts[1]}"
    if parts[0] == "/unwatch" and len(parts) > 1:
        watcher.unwatch(parts[1])
        return f"Stopped watching {parts[1]}"
    return "Commands: /auto on|off, /watch <name>, /unwatch <name>, /quit"


async def run() -> None:
    setup_logging(debug=settings.debug)
    logger = get_logger("startup")

    session = build_session(settings)
    watcher = HealthWatcher(
        session.fleet,
        interval=settings.health_poll_interval,
        restart_limit=settings.watch_restart_limit,
    )
    watcher.start()
    logger.info("fleetpilot_started", auto_mode=session.auto_mode)

    loop = asyncio.get_running_loop()
    try:
        while True:
            line = await loop.run_in_executor(None, _read_line)
            if line is None:
                break
            line = line.strip()
            if not line:
                continue
            if line.startswith("/"):
                reply = handle_meta(session, watcher, line)
                if reply is None:
                    break
                print(reply)
                continue
            response = await session.handle(line)
            print(render(response))
    finally:
        await watcher.stop()
        logger.info("fleetpilot_stopped")


def _read_line() -> str | None:
    try:
        return input(PROMPT)
    except EOFError:
        return None


def main() -> None:
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
