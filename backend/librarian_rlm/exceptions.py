"""Custom exceptions for the Librarian RLM engine."""


class RLMError(Exception):
    """Base exception for RLM errors."""
    pass


class ScriptError(RLMError):
    """Raised when a script fails inside the sandbox."""
    pass


class ScriptTimeoutError(ScriptError):
    """Raised when a script exceeds its wall-clock ceiling."""

    def __init__(self, timeout: float):
        super().__init__(f"Script timed out after {timeout:g} seconds")
        self.timeout = timeout


class SandboxViolationError(ScriptError):
    """Raised when a script reaches for a capability outside the sandbox policy."""
    pass


class PathEscapeError(SandboxViolationError):
    """Raised when a repo bridge path resolves outside the sandbox root."""

    def __init__(self, path: str, root: str = ""):
        super().__init__(f'Path "{path}" attempts to escape the sandbox root')
        self.path = path
        self.root = root


class BufferNotFoundError(ScriptError):
    """Raised when FINAL_VAR references a buffer key that does not exist."""

    def __init__(self, key: str):
        super().__init__(f"Buffer '{key}' not found")
        self.key = key


class ContextLoadError(RLMError):
    """Raised when the repository content loader fails."""
    pass


class LLMError(RLMError):
    """Raised when LLM call fails."""

    def __init__(self, message: str, provider: str = "", model: str = ""):
        super().__init__(message)
        self.provider = provider
        self.model = model


class ConfigurationError(RLMError):
    """Raised when configuration is invalid."""
    pass
