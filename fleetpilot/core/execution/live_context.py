"""Live fleet context for informational answers.

Builds the text block handed to the model alongside an operator's question
(snapshot details, health summary, identified issues, recent error
diagnostics), and the deterministic answers used when no model is available.
"""

from __future__ import annotations

import time

from fleetpilot.core.diagnostics.error_analyzer import ErrorAnalysis
from fleetpilot.fleet.models import Target, TargetStatus

HIGH_MEMORY_MB = 500.0
HIGH_CPU = 80.0
FREQUENT_RESTARTS = 5

_LOG_CUES = ("log", "error", "issue", "crash", "fail")
_HEALTH_CUES = ("health", "performance", "cpu", "memory")


def wants_error_analysis(question: str) -> bool:
    lowered = question.lower()
    return any(cue in lowered for cue in _LOG_CUES)


def format_memory(num_bytes: int) -> str:
    if num_bytes <= 0:
        return "0 B"
    size = float(num_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{round(size, 1):g} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def format_uptime(started_at: int | None, now: float | None = None) -> str:
    """Human uptime for an epoch-milliseconds start time."""
    if not started_at:
        return "N/A"
    now_ms = (now if now is not None else time.time()) * 1000
    seconds = max(0, int((now_ms - started_at) / 1000))
    if seconds < 60:
        return f"{seconds}s"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m {seconds % 60}s"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h {minutes % 60}m"
    return f"{hours // 24}d {hours % 24}h"


def _noun(count: int) -> str:
    return "process" if count == 1 else "processes"


def format_targets(targets: list[Target]) -> str:
    if not targets:
        return "No processes are currently running."

    lines = [f"Total {_noun(len(targets))}: {len(targets)}", ""]
    for t in targets:
        lines.extend([
            f"Process: {t.name}",
            f"  Status: {t.status.value}",
            f"  PID: {t.pid or 'N/A'}",
            f"  CPU: {t.cpu:g}%",
            f"  Memory: {format_memory(t.memory)}",
            f"  Uptime: {format_uptime(t.started_at)}",
            f"  Restarts: {t.restarts}",
            "",
        ])
    return "\n".join(lines).rstrip()


def format_health(targets: list[Target]) -> str:
    if not targets:
        return "No processes to analyze."

    online = sum(1 for t in targets if t.status == TargetStatus.ONLINE)
    errored = sum(1 for t in targets if t.status == TargetStatus.ERRORED)
    stopped = sum(1 for t in targets if t.status == TargetStatus.STOPPED)
    avg_cpu = sum(t.cpu for t in targets) / len(targets)
    total_memory = sum(t.memory for t in targets)
    return "\n".join([
        "Health Summary:",
        f"  Online: {online}/{len(targets)}",
        f"  Errored: {errored}",
        f"  Stopped: {stopped}",
        f"  Average CPU: {avg_cpu:.1f}%",
        f"  Total Memory: {format_memory(total_memory)}",
    ])


def identify_issues(targets: list[Target]) -> list[str]:
    issues: list[str] = []
    for t in targets:
        if t.memory_mb > HIGH_MEMORY_MB:
            issues.append(f"{t.name}: High memory usage ({t.memory_mb:.1f}MB)")
        if t.cpu > HIGH_CPU:
            issues.append(f"{t.name}: High CPU usage ({t.cpu:g}%)")
        if t.restarts > FREQUENT_RESTARTS:
            issues.append(f"{t.name}: Frequent restarts ({t.restarts} times)")
        if t.status == TargetStatus.ERRORED:
            issues.append(f"{t.name}: Process in error state")
        if t.unstable_restarts > 0:
            issues.append(f"{t.name}: Unstable ({t.unstable_restarts} unstable restarts)")
    return issues


def format_error_analysis(analysis: ErrorAnalysis) -> str:
    if not analysis.has_errors:
        return "RECENT ERROR ANALYSIS:\n- No recent errors detected in logs."

    lines = [
        "RECENT ERROR ANALYSIS:",
        f"- Found {analysis.error_count} error(s) in recent logs",
    ]
    diagnosis = analysis.diagnosis
    if diagnosis is not None:
        lines.append(f"- Issue: {diagnosis.summary}")
        lines.append(f"- Severity: {diagnosis.severity}")
        lines.append(f"- Root Cause: {diagnosis.root_cause}")
        if diagnosis.actionable_suggestions:
            lines.append("- Suggested Actions:")
            lines.extend(
                f"  {i}. {s}" for i, s in enumerate(diagnosis.actionable_suggestions[:3], start=1)
            )
    if analysis.quick_fix:
        lines.append(f"- Quick Fix: {analysis.quick_fix}")

    recent = analysis.errors[0]
    lines.extend(["", "Most Recent Error:", f"- Type: {recent.type}", f"- Process: {recent.process}"])
    lines.append(f"- Time: {recent.timestamp}")
    if recent.file_path:
        lines.append(f"- File: {recent.file_path}")
    return "\n".join(lines)


def build_live_context(
    question: str,
    targets: list[Target],
    error_analysis: ErrorAnalysis | None = None,
) -> str:
    """Assemble the live-data block sent with an informational question."""
    names = ", ".join(t.name for t in targets) or "(none)"
    sections = [f"PROCESS NAMES: {names}", format_targets(targets)]

    lowered = question.lower()
    if any(cue in lowered for cue in _HEALTH_CUES):
        sections.insert(1, format_health(targets))

    issues = identify_issues(targets)
    if issues:
        sections.append("Identified issues:\n" + "\n".join(f"- {i}" for i in issues))

    if error_analysis is not None:
        sections.append(format_error_analysis(error_analysis))

    sections.append(f"User Question: {question}")
    return "\n\n".join(sections)


def fallback_answer(question: str, targets: list[Target]) -> str:
    """Rule-based answer to *question* from the live snapshot."""
    lowered = question.lower()
    online = sum(1 for t in targets if t.status == TargetStatus.ONLINE)

    mentions_process = any(word in lowered for word in ("server", "process", "app"))

    if "name" in lowered and mentions_process:
        if not targets:
            return "You don't have any processes running right now."
        if len(targets) == 1:
            return f'Your server/process is named "{targets[0].name}".'
        return f"You have {len(targets)} processes: {', '.join(t.name for t in targets)}."

    if (
        "list" in lowered
        or "what are" in lowered
        or ("show" in lowered and mentions_process)
    ):
        if not targets:
            return "You don't have any processes running right now."
        listing = ", ".join(f"{t.name} ({t.status.value})" for t in targets)
        return f"Your processes: {listing}"

    if "how many" in lowered or "count" in lowered:
        return f"You have {len(targets)} total {_noun(len(targets))}, with {online} currently online."

    if any(cue in lowered for cue in ("status", "health", "how", "doing")):
        if not targets:
            return 'No processes are running. Try "start my app" to launch one.'
        errored = sum(1 for t in targets if t.status == TargetStatus.ERRORED)
        if errored:
            return (
                f"You have {errored} errored {_noun(errored)} that need attention. "
                f"{online} {_noun(online)} running normally."
            )
        if online == len(targets):
            return f"All {len(targets)} {_noun(len(targets))} are running smoothly."
        return f"{online} out of {len(targets)} processes are currently online."

    return (
        "I can help you manage your processes. Try asking "
        '"show my processes" to see the current status, or ask a specific question about one.'
    )
