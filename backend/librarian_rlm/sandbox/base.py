"""Sandbox interface for script execution."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from librarian_rlm.bridges.repo import RepoBridge
from librarian_rlm.types import ExecutionResult, LLMQueryFn


class ScriptSandboxInterface(ABC):
    """Abstract interface for script sandboxes.

    Implementations run one model-authored script against the engine's
    persistent buffers and report stdout, completion and errors. They must
    never raise for script failures; those are reported on the result.
    """

    @abstractmethod
    async def execute(
        self,
        script: str,
        repo: Optional[RepoBridge],
        llm_query: Optional[LLMQueryFn],
        buffers: Optional[Dict[str, Any]] = None,
        context: str = "",
        timeout: Optional[float] = None,
    ) -> ExecutionResult:
        """Execute a script in the sandbox.

        Args:
            script: Python source authored by the controlling model
            repo: Repository bridge exposed to the script as ``repo``
            llm_query: Sub-model query function exposed as ``llm_query``
            buffers: Mutable mapping shared with the script as ``buffers``
            context: Repository context text exposed as ``context``
            timeout: Execution timeout in seconds (overrides default)

        Returns:
            ExecutionResult with stdout, buffers, completion and error
        """
        ...

    @abstractmethod
    def get_sandbox_type(self) -> str:
        """Get the type of sandbox.

        Returns:
            Sandbox type identifier (e.g., 'restricted')
        """
        ...
