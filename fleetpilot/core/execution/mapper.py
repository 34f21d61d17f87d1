"""Command mapping and fleet dispatch.

The :class:`CommandMapper` turns a :class:`CommandAnalysis` into a
:class:`ManagedCommandSpec` using a fixed registry, validates targets against
a fresh fleet snapshot, escalates safety for batch targets, and executes
commands against the fleet backend.

Execution never raises: every outcome comes back as an
:class:`ExecutionResult`.  Batch targets (``all`` / ``everything``) run as a
sequential loop in which each per-target call is caught on its own, so one
failing target does not abort the rest.
"""

from __future__ import annotations

import json

from fleetpilot.core.execution.models import ExecutionResult, ManagedCommandSpec
from fleetpilot.core.intent.models import CommandAnalysis, Safety
from fleetpilot.core.matching import closest_match, names_match, normalize_name, similarity
from fleetpilot.fleet.base import FleetBackend
from fleetpilot.fleet.models import LogEntry, LogQuery, Target, TargetStatus
from fleetpilot.utils.exceptions import ExecutionFailureError
from fleetpilot.utils.logging import get_logger

logger = get_logger("execution.mapper")

BATCH_TARGETS = frozenset({"all", "everything"})
LOG_LINES = 50


def _spec(verb: str, description: str, safety: Safety, requires_target: bool) -> ManagedCommandSpec:
    return ManagedCommandSpec(
        verb=verb,
        description=description,
        safety=safety,
        requires_target=requires_target,
    )


COMMAND_REGISTRY: dict[str, ManagedCommandSpec] = {
    # Lifecycle
    "restart_process": _spec("restart", "Restart processes", Safety.CAUTION, True),
    "stop_process": _spec("stop", "Stop processes", Safety.DANGEROUS, True),
    "start_process": _spec("start", "Start processes", Safety.CAUTION, True),
    "reload_process": _spec("reload", "Graceful reload processes", Safety.CAUTION, True),
    "delete_process": _spec("delete", "Delete processes", Safety.DANGEROUS, True),
    # Information
    "show_status": _spec("status", "Show process status", Safety.SAFE, False),
    "show_list": _spec("list", "List all processes", Safety.SAFE, False),
    "show_logs": _spec("logs", "Show process logs", Safety.SAFE, False),
    "show_error_logs": _spec("error_logs", "Show error logs only", Safety.SAFE, False),
    "show_info": _spec("info", "Show detailed process information", Safety.SAFE, True),
    "show_monit": _spec("monit", "Monitor processes", Safety.SAFE, False),
    # System
    "save_config": _spec("save", "Save current process list", Safety.SAFE, False),
}

# Lifecycle verbs that fan out over the fleet for batch targets.
_BATCH_VERBS = {
    "restart": "Restarted",
    "stop": "Stopped",
    "start": "Started",
    "reload": "Reloaded",
    "delete": "Deleted",
}

# Verbs whose optional target narrows the query rather than being required.
_OPTIONAL_TARGET_VERBS = {"logs", "error_logs"}


class CommandMapper:
    """Maps analyses to fleet commands and executes them.

    Parameters
    ----------
    fleet:
        The fleet backend used for snapshots and execution.
    """

    def __init__(self, fleet: FleetBackend) -> None:
        self.fleet = fleet

    # ------------------------------------------------------------------
    # Mapping and validation
    # ------------------------------------------------------------------

    async def map_to_command(self, analysis: CommandAnalysis) -> ManagedCommandSpec | None:
        """Build a command for *analysis*, or ``None`` for unknown intents."""
        entry = COMMAND_REGISTRY.get(analysis.intent)
        if entry is None:
            return None

        spec = entry.model_copy(deep=True)
        target = analysis.parameters.target
        if target and (spec.requires_target or spec.verb in _OPTIONAL_TARGET_VERBS):
            spec.args.append(target)

        if spec.requires_target:
            spec.available_targets = await self._available_targets()

        return spec

    def validate_target(self, spec: ManagedCommandSpec, candidate: str | None) -> bool:
        """Check *candidate* against the snapshot taken while mapping.

        Accepts when the command needs no target, for batch targets, for exact
        or fuzzy matches, and when the snapshot is unknown (the fleet backend
        then rejects bad names at execution time).
        """
        if not spec.requires_target:
            return True
        if not candidate:
            return False
        if candidate.lower() in BATCH_TARGETS:
            return True
        if spec.available_targets is None:
            return True
        if candidate in spec.available_targets:
            return True
        return any(names_match(candidate, known) for known in spec.available_targets)

    def resolve_target(self, spec: ManagedCommandSpec) -> None:
        """Rewrite a fuzzily matched target to the known name it matched.

        Exact names, batch targets and unknown snapshots are left alone.
        """
        candidate = spec.target
        if (
            not spec.requires_target
            or not candidate
            or candidate.lower() in BATCH_TARGETS
            or not spec.available_targets
            or candidate in spec.available_targets
        ):
            return
        matches = [known for known in spec.available_targets if names_match(candidate, known)]
        if not matches:
            return
        resolved = max(
            matches,
            key=lambda known: similarity(normalize_name(candidate), normalize_name(known)),
        )
        logger.info("target_resolved", candidate=candidate, target=resolved)
        spec.args[0] = resolved

    def suggest_target(self, spec: ManagedCommandSpec, candidate: str) -> str | None:
        """Closest known target to *candidate*, for remediation hints."""
        if not spec.available_targets:
            return None
        return closest_match(candidate, spec.available_targets)

    @staticmethod
    def get_safety_level(spec: ManagedCommandSpec, target: str | None = None) -> Safety:
        """Effective safety: caution and dangerous escalate to dangerous for batch targets."""
        if (
            target is not None
            and target.lower() in BATCH_TARGETS
            and spec.safety in (Safety.CAUTION, Safety.DANGEROUS)
        ):
            return Safety.DANGEROUS
        return spec.safety

    async def _available_targets(self) -> list[str] | None:
        try:
            return await self.fleet.target_names()
        except Exception as exc:
            logger.warning("target_snapshot_failed", error=str(exc))
            return None

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_command(self, spec: ManagedCommandSpec) -> ExecutionResult:
        """Run *spec* against the fleet backend.  Never raises."""
        logger.info("command_execute", verb=spec.verb, target=spec.target)
        try:
            output, success = await self._dispatch(spec)
        except Exception as exc:
            error = str(exc)
            logger.error("command_failed", verb=spec.verb, target=spec.target, error=error)
            return ExecutionResult(
                success=False,
                message=f"{spec.description} failed: {error}",
                error=error,
                command=spec.command_line,
            )

        if not success:
            return ExecutionResult(
                success=False,
                message=f"{spec.description} completed with failures",
                output=output,
                error=output,
                command=spec.command_line,
            )
        return ExecutionResult(
            success=True,
            message=f"{spec.description} completed successfully",
            output=output,
            command=spec.command_line,
        )

    async def _dispatch(self, spec: ManagedCommandSpec) -> tuple[str, bool]:
        verb = spec.verb
        target = spec.target

        if verb in _BATCH_VERBS:
            if not target:
                raise ExecutionFailureError(verb, None, f"No target specified for {verb}")
            if target.lower() in BATCH_TARGETS:
                return await self._run_batch(verb)
            await getattr(self.fleet, verb)(target)
            return f"{_BATCH_VERBS[verb]} {target}", True

        if verb in ("status", "list"):
            return format_target_summary(await self.fleet.list()), True

        if verb == "monit":
            return format_metrics(await self.fleet.list()), True

        if verb == "logs":
            logs = await self.fleet.logs(LogQuery(target=target, lines=LOG_LINES))
            return format_logs(logs), True

        if verb == "error_logs":
            logs = await self.fleet.error_logs(target, LOG_LINES)
            return format_logs(logs), True

        if verb == "info":
            if not target:
                raise ExecutionFailureError(verb, None, "No target specified for info")
            found = await self.fleet.describe(target)
            if not found:
                raise ExecutionFailureError(verb, target, f"process {target} not found")
            return json.dumps([t.model_dump(mode="json") for t in found], indent=2), True

        if verb == "save":
            await self.fleet.save()
            return "Process list saved", True

        raise ExecutionFailureError(verb, target, f"Unsupported action: {verb}")

    async def _run_batch(self, verb: str) -> tuple[str, bool]:
        targets = await self.fleet.list()
        operation = getattr(self.fleet, verb)
        succeeded: list[str] = []
        failed: list[tuple[str, str]] = []

        for target in targets:
            try:
                await operation(target.name)
            except Exception as exc:
                logger.error("batch_item_failed", verb=verb, target=target.name, error=str(exc))
                failed.append((target.name, str(exc)))
            else:
                succeeded.append(target.name)

        logger.info(
            "batch_complete",
            verb=verb,
            attempted=len(targets),
            succeeded=len(succeeded),
        )
        if not targets:
            return f"No processes to {verb}", True

        summary = f"{_BATCH_VERBS[verb]} {len(succeeded)}/{len(targets)} processes"
        if failed:
            summary += "\nFailed: " + ", ".join(f"{name} ({error})" for name, error in failed)
        return summary, not failed


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def format_target_summary(targets: list[Target]) -> str:
    if not targets:
        return "No processes found"

    lines = [f"Process Summary: {len(targets)} total"]
    for status, label in (
        (TargetStatus.ONLINE, "Online"),
        (TargetStatus.STOPPED, "Stopped"),
        (TargetStatus.ERRORED, "Errored"),
    ):
        count = sum(1 for t in targets if t.status == status)
        if count:
            lines.append(f"{label}: {count}")
    lines.extend(f"- {t.name} ({t.status.value})" for t in targets)
    return "\n".join(lines)


def format_metrics(targets: list[Target]) -> str:
    if not targets:
        return "No processes found"
    return "\n".join(
        f"{t.name}: {t.status.value}, CPU {t.cpu:.1f}%, Memory {t.memory_mb:.1f}MB, "
        f"Restarts {t.restarts}"
        for t in targets
    )


def format_logs(logs: list[LogEntry]) -> str:
    if not logs:
        return "No log entries found"
    return "\n".join(
        f"{log.timestamp} {log.level.value.upper()} [{log.process}]: {log.message.strip()}"
        for log in logs
    )
