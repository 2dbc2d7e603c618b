# kiew/errors.py - Error taxonomy shared by the chat core
"""
Exceptions raised by the tool-calling loop, the tool registry and storage.

Tool-level errors (validation, unknown tool, execution) are turned into text
results for the model and never abort a turn. StorageError marks persisted
state that can no longer be trusted and is raised to whoever touched it.
"""


class KiewError(Exception):
    """Base exception for all kiew errors."""
    pass


class ValidationError(KiewError):
    """Tool arguments are missing or malformed."""
    pass


class UnknownToolError(KiewError):
    """The model asked for a tool that is not registered."""

    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class ToolExecutionError(KiewError):
    """A registered tool failed while running."""

    def __init__(self, name: str, message: str):
        super().__init__(message)
        self.name = name


class StorageError(KiewError):
    """Persistence I/O failed or stored content could not be parsed."""
    pass


class SessionCorruptionError(KiewError):
    """The backend session history holds a turn with no content."""

    def __init__(self, chat_id: int, turn_index: int):
        super().__init__(f"Session for chat {chat_id} has an empty turn at index {turn_index}")
        self.chat_id = chat_id
        self.turn_index = turn_index


class ToolLoopLimitError(KiewError):
    """The model kept requesting tools past the iteration cap."""

    def __init__(self, iterations: int):
        super().__init__(f"Exceeded {iterations} tool-calling iterations without a final answer")
        self.iterations = iterations


class ConfigurationError(KiewError):
    """Startup configuration is unusable (missing credentials, no provider)."""
    pass
