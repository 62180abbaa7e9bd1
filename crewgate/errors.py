"""Exception hierarchy for crewgate."""


class CrewgateError(Exception):
    """Base class for all crewgate errors."""


class ConfigurationError(CrewgateError):
    """Missing credentials or a disallowed setting. Never retried."""


class PathNotAllowedError(ConfigurationError):
    """A path resolved outside every allowed root."""

    def __init__(self, path: str):
        super().__init__(f"Path not allowed: {path}")
        self.path = path


class SessionNotFoundError(CrewgateError):
    """The session was never started in this registry."""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class AlreadyRunningError(CrewgateError):
    """A turn is already active for the session."""

    def __init__(self, session_id: str):
        super().__init__("Agent is already processing a message")
        self.session_id = session_id


class TurnAborted(CrewgateError):
    """The turn was cancelled by the user. Not a failure."""

    def __init__(self, message: str = "Turn aborted"):
        super().__init__(message)


class TurnBudgetExceeded(CrewgateError):
    """The tool loop ran out of turns before a final answer."""

    def __init__(self, max_turns: int):
        super().__init__(f"Tool loop exceeded max_turns ({max_turns}).")
        self.max_turns = max_turns


class ProviderError(CrewgateError):
    """A backend request failed or the backend reported an error result."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class EditScopeError(CrewgateError):
    """An edit intent or tool call violated the declared edit scope."""
