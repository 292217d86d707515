"""Error types raised by the copilot agent machinery."""


class CopilotError(Exception):
    """Base class for all copilot errors."""

    def __init__(self, message: str, retriable: bool = False) -> None:
        super().__init__(message)
        self.retriable = retriable


class ModelStreamError(CopilotError):
    """Raised when the model backend stream cannot be opened or consumed."""

    def __init__(self, reason: str, retriable: bool = False) -> None:
        super().__init__(reason, retriable=retriable)


class ModelStreamTimeoutError(ModelStreamError):
    """Raised when a single model turn exceeds its time budget."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Model stream timed out after {timeout:g}s", retriable=True)
        self.timeout = timeout


class ProtocolError(CopilotError):
    """Raised when the backend ends a turn without a stop reason."""

    def __init__(self, reason: str = "Unexpected end of stream without stop reason") -> None:
        super().__init__(reason)


class MaxIterationsExceededError(CopilotError):
    """Raised when a run hits its iteration ceiling without completing."""

    def __init__(self, max_iterations: int) -> None:
        super().__init__(f"Maximum iterations ({max_iterations}) reached. Stopping to prevent infinite loop.")
        self.max_iterations = max_iterations


class ToolTimeoutError(CopilotError):
    """Raised when a tool handler exceeds its time budget."""

    def __init__(self, tool_name: str, timeout: float) -> None:
        super().__init__(f"Tool {tool_name} timed out after {timeout:g}s", retriable=True)
        self.tool_name = tool_name
        self.timeout = timeout
