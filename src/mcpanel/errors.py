"""Exception types shared by the provider, lock and orchestrator layers."""


class PanelError(Exception):
    """Base exception for all control panel errors."""

    def __init__(self, message: str, details: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ConfigurationError(PanelError):
    """Raised when settings are missing or inconsistent."""


class ConflictError(PanelError):
    """Another named action currently holds the server action lock."""

    def __init__(self, held_action: str, requested: str | None = None):
        label = requested or "operation"
        super().__init__(
            f"Cannot {label}. Another operation is in progress: {held_action}"
        )
        self.held_action = held_action
        self.requested = requested


class PreconditionError(PanelError):
    """The current server state does not permit the requested operation."""


class ValidationError(PreconditionError):
    """User supplied input failed validation."""


class ServiceNotReadyError(PreconditionError):
    """The instance is running but the game service is not active yet."""


class BackendError(PanelError):
    """The cloud backend reported a failure. ``code`` is the provider's error code."""

    def __init__(self, code: str, message: str, details: str | None = None):
        super().__init__(message, details)
        self.code = code

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ParameterAlreadyExists(BackendError):
    def __init__(self, name: str):
        super().__init__("ParameterAlreadyExists", f"Parameter {name} already exists")
        self.name = name


class CommandFailedError(BackendError):
    """A remote command finished in a failed state. ``message`` holds its stderr."""

    def __init__(self, message: str, command_id: str = "", status: str = "Failed"):
        super().__init__("CommandFailed", message)
        self.command_id = command_id
        self.status = status


class WaitTimeoutError(PanelError, TimeoutError):
    """A bounded poll loop ran out of attempts."""


class UnexpectedStateError(PanelError):
    """The resource left the state space the operation was waiting in."""

    def __init__(self, message: str, state: str = ""):
        super().__init__(message)
        self.state = state
