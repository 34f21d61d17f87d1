"""Prompt templates for command analysis.

Consumed by :class:`~fleetpilot.core.intent.analyzer.IntentAnalyzer` to ask
the model for a strict JSON reading of the operator's request.
"""

INTENT_CATEGORIES: list[str] = [
    "info_request",
    "execute_pending",
    "cancel_pending",
    "restart_process",
    "stop_process",
    "start_process",
    "reload_process",
    "delete_process",
    "show_status",
    "show_list",
    "show_logs",
    "show_error_logs",
    "show_info",
    "show_monit",
    "save_config",
    "unknown",
]

ANALYSIS_TEMPLATE: str = """Process-fleet command analyzer. Map the operator's input to a managed-process command.

INPUT: "{user_input}"
{context_block}
INTENTS:
- info_request: Questions (what/how/which/why/list ...?)
- execute_pending: Confirmations of a proposed action (yes/do it/go ahead/oui/sí - ANY language)
- cancel_pending: Refusals of a proposed action (no/cancel/never mind/non/no gracias - ANY language)
- restart_process: Restart processes
- stop_process: Stop processes
- start_process: Start processes
- reload_process: Graceful reload of processes
- delete_process: Remove processes from the fleet
- show_status: Process table only
- show_list: List processes
- show_logs: Show logs
- show_error_logs: Show error logs only
- show_info: Detailed information about one process
- show_monit: CPU / memory metrics
- save_config: Save the current process list

RULES:
1. Questions -> info_request
2. Confirmations (any language) -> execute_pending
3. Refusals (any language) -> cancel_pending
4. Actions -> the specific intent
5. Language agnostic, typo tolerant
6. Extract the process name into parameters.target; use "all" for every process
7. Resolve "my app", "the server", "it" to a known process name when possible

SAFETY:
- safe: read-only, may auto-execute
- caution: changes one process, confirm when targeting "all"
- dangerous: stops or removes processes, always confirm

JSON RESPONSE (object only):
{{
  "intent": "restart_process",
  "targetCommand": "restart",
  "parameters": {{
    "target": "process_name|all|null",
    "required": ["target"],
    "optional": [],
    "provided": {{}}
  }},
  "confidence": 0.95,
  "safety": "caution",
  "missingParams": [],
  "language": "English",
  "needsConfirmation": false,
  "canAutoExecute": true
}}"""

CONTEXT_HEADER: str = "CONVERSATION CONTEXT:"
