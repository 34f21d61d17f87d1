"""Log error diagnostics.

Picks error lines out of a log tail, classifies each one (type, severity,
category, location), and produces a diagnosis.  The model is asked for a
JSON diagnosis when one is configured; a per-category template is used
otherwise or when its answer is unusable.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from fleetpilot.core.llm.parsing import parse_json_object
from fleetpilot.fleet.models import LogEntry, LogLevel
from fleetpilot.utils.exceptions import LLMError
from fleetpilot.utils.logging import get_logger

logger = get_logger("diagnostics.error_analyzer")

Severity = Literal["critical", "high", "medium", "low"]
Category = Literal["module", "syntax", "runtime", "network", "permission", "resource", "other"]

_ERROR_INDICATORS = (
    "error", "exception", "failed", "cannot", "unable", "not found",
    "econnrefused", "enotfound", "eacces", "etimedout", "err_module_not_found",
    "typeerror", "referenceerror", "syntaxerror", "unhandledpromiserejectionwarning",
)

# Checked in order; the first marker found in the message wins.
_KNOWN_TYPES: list[tuple[str, str]] = [
    ("ERR_MODULE_NOT_FOUND", "Module Not Found"),
    ("ECONNREFUSED", "Connection Refused"),
    ("ENOTFOUND", "Host Not Found"),
    ("EACCES", "Permission Denied"),
    ("ETIMEDOUT", "Connection Timeout"),
    ("TypeError", "Type Error"),
    ("ReferenceError", "Reference Error"),
    ("SyntaxError", "Syntax Error"),
    ("UnhandledPromiseRejectionWarning", "Unhandled Promise Rejection"),
    ("MaxListenersExceededWarning", "Memory Leak Warning"),
    ("Error: Cannot find module", "Missing Module"),
]

_SEVERITY_BY_TYPE: dict[str, Severity] = {
    "Module Not Found": "critical",
    "Syntax Error": "critical",
    "Connection Refused": "high",
    "Permission Denied": "high",
    "Type Error": "high",
    "Reference Error": "high",
    "Connection Timeout": "medium",
    "Host Not Found": "medium",
    "Unhandled Promise Rejection": "medium",
    "Memory Leak Warning": "low",
}

_FILE_PATTERNS = [
    re.compile(r"['\"`]([^'\"`]*\.(?:js|ts|mjs|cjs|json|py))['\"`]"),
    re.compile(r"at file:///([^)\s]+)"),
    re.compile(r"Cannot find module\s+['\"`]([^'\"`]+)['\"`]"),
    re.compile(r"\s+at\s+([^:\s]+\.(?:js|ts|mjs|cjs)):"),
    re.compile(r"\s+at\s+.*?\(([^():\s]+\.(?:js|ts|mjs|cjs)):\d+"),
    re.compile(r'File "([^"]+)", line \d+'),
    re.compile(r"Error.*?([/\w.-]+\.(?:js|ts|mjs|cjs|json|py))"),
]
_LINE_NUMBER = re.compile(r":(\d+):\d+|, line (\d+)")
_GENERIC_ERROR = re.compile(r"(\w+Error):")

DIAGNOSIS_TEMPLATE = """Analyze these process errors and provide an actionable diagnosis.

ERRORS:
{errors}

Focus on the most critical issue first. Be specific and practical.
Recommend follow-up actions as natural-language requests (e.g. "restart api-server").

Return ONLY valid JSON:
{{
  "summary": "Brief description of main issue",
  "root_cause": "Technical explanation of why this happened",
  "actionable_suggestions": ["Specific step 1", "Specific step 2"],
  "follow_up_commands": ["show logs for api-server"],
  "severity": "critical|high|medium|low",
  "confidence": 0.9
}}"""


class ParsedError(BaseModel):
    type: str
    message: str
    file_path: str | None = None
    line_number: int | None = None
    stack_trace: str | None = None
    process: str
    timestamp: str
    severity: Severity = "medium"
    category: Category = "other"


class Diagnosis(BaseModel):
    summary: str
    root_cause: str
    actionable_suggestions: list[str] = Field(default_factory=list)
    follow_up_commands: list[str] = Field(default_factory=list)
    severity: Severity = "medium"
    confidence: float = Field(default=0.7, ge=0.0, le=1.0)


class ErrorAnalysis(BaseModel):
    has_errors: bool = False
    error_count: int = 0
    errors: list[ParsedError] = Field(default_factory=list)
    diagnosis: Diagnosis | None = None
    quick_fix: str | None = None


class ErrorAnalyzer:
    """Classify log errors and diagnose the most pressing one.

    Parameters
    ----------
    llm_client:
        Optional :class:`~fleetpilot.core.llm.client.LLMClient` used for the
        diagnosis; templates are used without it.
    """

    def __init__(self, llm_client=None):
        self.llm = llm_client

    async def analyze(self, logs: list[LogEntry]) -> ErrorAnalysis:
        errors = self.parse_errors(logs)
        if not errors:
            return ErrorAnalysis()

        diagnosis = None
        if self.llm is not None and self.llm.is_configured():
            diagnosis = await self._diagnose_with_llm(errors)
        if diagnosis is None:
            diagnosis = fallback_diagnosis(errors)

        logger.info(
            "errors_analyzed",
            error_count=len(errors),
            category=errors[0].category,
            severity=diagnosis.severity,
        )
        return ErrorAnalysis(
            has_errors=True,
            error_count=len(errors),
            errors=errors,
            diagnosis=diagnosis,
            quick_fix=quick_fix(errors[0]),
        )

    def parse_errors(self, logs: list[LogEntry]) -> list[ParsedError]:
        """Classify every error line in *logs*, newest first."""
        errors = [
            parse_error(entry)
            for entry in logs
            if entry.level == LogLevel.ERROR or is_error_message(entry.message)
        ]
        errors.sort(key=lambda e: _sort_key(e.timestamp), reverse=True)
        return errors

    async def _diagnose_with_llm(self, errors: list[ParsedError]) -> Diagnosis | None:
        summary = "\n".join(f"{e.type}: {e.message[:200]}" for e in errors[:3])
        try:
            response = await self.llm.query(DIAGNOSIS_TEMPLATE.format(errors=summary))
            data = parse_json_object(response)
        except (LLMError, ValueError) as exc:
            logger.warning("llm_diagnosis_failed_falling_back", error=str(exc))
            return None

        severity = data.get("severity")
        try:
            confidence = max(0.0, min(1.0, float(data.get("confidence", 0.7))))
        except (TypeError, ValueError):
            confidence = 0.7
        return Diagnosis(
            summary=str(data.get("summary") or "Error analysis completed"),
            root_cause=str(
                data.get("root_cause") or data.get("rootCause") or "Unable to determine root cause"
            ),
            actionable_suggestions=_strings(
                data.get("actionable_suggestions", data.get("actionableSuggestions"))
            ),
            follow_up_commands=_strings(
                data.get("follow_up_commands", data.get("followUpCommands"))
            ),
            severity=severity if severity in _SEVERITIES else errors[0].severity,
            confidence=confidence,
        )


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

_SEVERITIES = {"critical", "high", "medium", "low"}


def is_error_message(message: str) -> bool:
    lowered = message.lower()
    return any(indicator in lowered for indicator in _ERROR_INDICATORS)


def parse_error(entry: LogEntry) -> ParsedError:
    message = entry.message.strip()
    error_type = error_type_of(message)
    return ParsedError(
        type=error_type,
        message=message,
        file_path=_file_path(message),
        line_number=_line_number(message),
        stack_trace=_stack_trace(message),
        process=entry.process,
        timestamp=entry.timestamp,
        severity=severity_of(message, error_type),
        category=category_of(message, error_type),
    )


def error_type_of(message: str) -> str:
    for marker, name in _KNOWN_TYPES:
        if marker in message:
            return name
    match = _GENERIC_ERROR.search(message)
    if match:
        return match.group(1)
    return "Runtime Error"


def severity_of(message: str, error_type: str) -> Severity:
    if "Cannot find module" in message and "imported from" in message:
        return "critical"
    return _SEVERITY_BY_TYPE.get(error_type, "medium")


def category_of(message: str, error_type: str) -> Category:
    if "Module" in error_type or "Cannot find module" in message:
        return "module"
    if error_type == "Syntax Error":
        return "syntax"
    if "Connection" in error_type or error_type == "Host Not Found":
        return "network"
    if "Permission" in error_type or "EACCES" in message:
        return "permission"
    if "Memory" in error_type or "MaxListeners" in message:
        return "resource"
    if "Type" in error_type or "Reference" in error_type:
        return "runtime"
    return "other"


def _file_path(message: str) -> str | None:
    for pattern in _FILE_PATTERNS:
        match = pattern.search(message)
        if match:
            return match.group(1)
    return None


def _line_number(message: str) -> int | None:
    match = _LINE_NUMBER.search(message)
    if not match:
        return None
    return int(match.group(1) or match.group(2))


def _stack_trace(message: str) -> str | None:
    lines = [line for line in message.splitlines() if line.strip().startswith("at ")]
    return "\n".join(lines) if lines else None


def _sort_key(timestamp: str) -> float:
    try:
        return datetime.fromisoformat(timestamp.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0.0


def _strings(value) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

def fallback_diagnosis(errors: list[ParsedError]) -> Diagnosis:
    main = errors[0]
    if main.category == "module":
        return Diagnosis(
            summary="Module or file not found",
            root_cause="The application is trying to load a module or file that doesn't exist",
            actionable_suggestions=[
                "Check if the referenced file exists at the specified path",
                "Verify the script path in the process configuration",
                "Reinstall the application's dependencies",
            ],
            follow_up_commands=[f"restart {main.process}"],
            severity="critical",
            confidence=0.8,
        )
    if main.category == "network":
        return Diagnosis(
            summary="Network connectivity issue",
            root_cause="Unable to establish a connection to a required service",
            actionable_suggestions=[
                "Check that the target service is running and reachable",
                "Verify network configuration and firewall settings",
                "Confirm connection URLs and ports",
            ],
            follow_up_commands=["show process status", f"restart {main.process}"],
            severity="high",
            confidence=0.7,
        )
    if main.category == "permission":
        return Diagnosis(
            summary="Permission or access denied",
            root_cause="Insufficient permissions to access required resources",
            actionable_suggestions=[
                "Check file and directory permissions",
                "Make sure the supervisor runs as a user with the required privileges",
                "Verify write access to log and PID directories",
            ],
            follow_up_commands=["show process status"],
            severity="high",
            confidence=0.8,
        )
    return Diagnosis(
        summary="Application runtime error detected",
        root_cause="A runtime error occurred during application execution",
        actionable_suggestions=[
            "Review the application code for the reported error",
            "Check the process logs for additional context",
        ],
        follow_up_commands=[f"show logs for {main.process}", f"restart {main.process}"],
        severity=main.severity,
        confidence=0.6,
    )


def quick_fix(error: ParsedError) -> str | None:
    if error.category == "module":
        if error.file_path:
            return f"Check if file exists: {error.file_path}"
        return "Reinstall the application's dependencies"
    if error.category == "network":
        return "Verify the target service is running and accessible"
    if error.category == "permission":
        return "Check file permissions and user access rights"
    if error.category == "syntax":
        if error.file_path and error.line_number:
            return f"Fix syntax error in {error.file_path} at line {error.line_number}"
        return "Fix the syntax error reported in the logs"
    if error.category == "resource":
        return f"Check memory usage of {error.process}"
    return None
