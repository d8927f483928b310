"""Single-shot research tool: run one script and render its result as text."""

import json
from typing import Optional

import structlog

from librarian_rlm.bridges.repo import RepoBridge
from librarian_rlm.sandbox.base import ScriptSandboxInterface
from librarian_rlm.sandbox.executor import RestrictedScriptExecutor
from librarian_rlm.types import ExecutionResult, LLMQueryFn

logger = structlog.get_logger()

NO_OUTPUT_MESSAGE = "Script completed with no output."


def render_result(result: ExecutionResult) -> str:
    """Render an execution result the way a tool caller sees it."""
    if result.error:
        return f"Script execution error: {result.error}"
    if result.final_answer is not None:
        return result.final_answer
    if result.stdout:
        return result.stdout
    if result.return_value is not None:
        if isinstance(result.return_value, str):
            return result.return_value
        return json.dumps(result.return_value, indent=2, default=str, ensure_ascii=False)
    return NO_OUTPUT_MESSAGE


async def research_repository(
    script: str,
    repo: RepoBridge,
    llm_query: Optional[LLMQueryFn],
    executor: Optional[ScriptSandboxInterface] = None,
) -> str:
    """Run one exploration script with fresh, empty buffers and no context.

    Args:
        script: Python script to run
        repo: Repository bridge exposed as ``repo``
        llm_query: Sub-model query function exposed as ``llm_query``
        executor: Script sandbox (default: RestrictedScriptExecutor)

    Returns:
        The rendered result text; never raises for script failures
    """
    executor = executor or RestrictedScriptExecutor()
    logger.info("research_tool_invoked", script_length=len(script))

    result = await executor.execute(script, repo=repo, llm_query=llm_query, buffers={}, context="")
    return render_result(result)
