"""Custom exceptions for llm-tui."""


class LlmTuiError(Exception):
    """Base exception for llm-tui."""

    pass


class ConfigurationError(LlmTuiError):
    """Configuration-related errors."""

    pass


class LLMError(LlmTuiError):
    """LLM-related errors."""

    pass


class LLMAPIError(LLMError):
    """LLM API errors (non-success status, auth, etc.)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderNotFoundError(LLMError):
    """Provider not registered."""

    def __init__(self, provider: str):
        super().__init__(f"Provider not available: {provider}")
        self.provider = provider


class StreamClosedError(LLMError):
    """Event stream polled after its terminal event or after being dropped."""

    pass


class ToolError(LlmTuiError):
    """Tool execution errors."""

    pass


class ToolExecutionError(ToolError):
    """Tool execution failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"Tool not found: {tool_name}")
        self.tool_name = tool_name


class SandboxViolationError(ToolError):
    """Path or process escapes the confinement root."""

    def __init__(self, path: str, root: str):
        super().__init__(f"Access denied: path must be within home directory ({root})")
        self.path = path
        self.root = root


class ConversationError(LlmTuiError):
    """Conversation engine errors."""

    pass


class TurnInProgressError(ConversationError):
    """A turn was submitted while another one is still active."""

    def __init__(self, phase: str):
        super().__init__(f"Cannot start a new turn while conversation is {phase}")
        self.phase = phase


class InvalidTransitionError(ConversationError):
    """Confirmation action issued in a state that does not accept it."""

    def __init__(self, action: str, phase: str):
        super().__init__(f"Cannot {action} while conversation is {phase}")
        self.action = action
        self.phase = phase


class CompactionError(ConversationError):
    """Context compaction failed; history was left untouched."""

    pass
