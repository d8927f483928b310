"""Sandbox module for script execution."""

from librarian_rlm.sandbox.base import ScriptSandboxInterface
from librarian_rlm.sandbox.executor import RestrictedScriptExecutor
from librarian_rlm.sandbox.policy import GlobalPolicy
from librarian_rlm.sandbox.transformer import compile_script
from librarian_rlm.sandbox.utils import batch, chunk, stringify_value

__all__ = [
    # Base classes
    "ScriptSandboxInterface",
    # Sandbox implementations
    "RestrictedScriptExecutor",
    # Policy
    "GlobalPolicy",
    "compile_script",
    # Utilities
    "chunk",
    "batch",
    "stringify_value",
]
