class FleetPilotError(Exception):
    """Base exception for the fleet assistant."""


class BackendUnavailableError(FleetPilotError):
    pass


class LLMError(BackendUnavailableError):
    def __init__(self, provider: str, detail: str):
        self.provider = provider
        super().__init__(f"LLM error ({provider}): {detail}")


class FleetUnavailableError(BackendUnavailableError):
    def __init__(self, detail: str):
        super().__init__(f"Fleet backend unavailable: {detail}")


class MalformedInferenceResponseError(FleetPilotError):
    def __init__(self, detail: str, raw: str = ""):
        self.raw = raw
        super().__init__(f"Malformed inference response: {detail}")


class MissingParameterError(FleetPilotError):
    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Missing required parameters: {', '.join(missing)}")


class InvalidTargetError(FleetPilotError):
    def __init__(self, target: str, suggestion: str | None = None):
        self.target = target
        self.suggestion = suggestion
        super().__init__(f"Invalid target: \"{target}\"")


class ExecutionFailureError(FleetPilotError):
    def __init__(self, verb: str, target: str | None, detail: str):
        self.verb = verb
        self.target = target
        subject = f"{verb} {target}" if target else verb
        super().__init__(f"'{subject}' failed: {detail}")


class NoPendingActionError(FleetPilotError):
    def __init__(self):
        super().__init__("No pending actions to execute.")
