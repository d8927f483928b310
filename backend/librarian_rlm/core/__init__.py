"""Core RLM components."""

from librarian_rlm.core.completion import parse_final_output, resolve_final_output
from librarian_rlm.core.engine import RLMEngine
from librarian_rlm.core.loop import ResearchLoop, extract_script
from librarian_rlm.core.metadata import build_metadata, summarize_iterations
from librarian_rlm.core.research import research_repository
from librarian_rlm.exceptions import (
    BufferNotFoundError,
    ConfigurationError,
    ContextLoadError,
    LLMError,
    PathEscapeError,
    RLMError,
    SandboxViolationError,
    ScriptError,
    ScriptTimeoutError,
)

__all__ = [
    "RLMEngine",
    "ResearchLoop",
    "research_repository",
    "parse_final_output",
    "resolve_final_output",
    "extract_script",
    "build_metadata",
    "summarize_iterations",
    "RLMError",
    "ScriptError",
    "ScriptTimeoutError",
    "SandboxViolationError",
    "PathEscapeError",
    "BufferNotFoundError",
    "ContextLoadError",
    "LLMError",
    "ConfigurationError",
]
