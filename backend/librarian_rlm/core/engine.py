"""RLM engine: persistent state across script iterations."""

import asyncio
import inspect
from typing import Optional

import structlog

from librarian_rlm.bridges.repo import RepoBridge
from librarian_rlm.config import get_settings
from librarian_rlm.core.metadata import build_metadata, summarize_iterations
from librarian_rlm.exceptions import ConfigurationError, ContextLoadError
from librarian_rlm.sandbox.base import ScriptSandboxInterface
from librarian_rlm.sandbox.executor import RestrictedScriptExecutor, format_error
from librarian_rlm.types import (
    ContextLoader,
    EngineState,
    EngineStatus,
    EngineStepResult,
    ExecutionResult,
    LLMQueryFn,
    RLMMetadata,
    ScriptOutcome,
)

logger = structlog.get_logger()


class RLMEngine:
    """Stateful iteration engine for one research session.

    Each ``execute()`` runs one script against the persisted ``buffers``,
    records its stdout and completion, and reports whether the session is
    complete. Only bounded metadata (``get_metadata()``) is meant to flow
    back to the controlling model.

    Example:
        ```python
        engine = RLMEngine(load_repo_text, repo=LocalRepoBridge("."), llm_query=query_fn)
        step = await engine.execute('buffers["files"] = 3\\nprint("ok")')
        while not step.is_complete:
            step = await engine.execute(next_script(engine.get_metadata()))
        print(step.final_answer)
        ```
    """

    def __init__(
        self,
        repo_content_loader: ContextLoader,
        repo: Optional[RepoBridge] = None,
        llm_query: Optional[LLMQueryFn] = None,
        executor: Optional[ScriptSandboxInterface] = None,
        max_iterations: Optional[int] = None,
        stdout_preview_length: Optional[int] = None,
    ) -> None:
        """Initialize the engine.

        Args:
            repo_content_loader: Sync or async callable returning the context text;
                called lazily on the first ``execute()``
            repo: Repository bridge exposed to scripts
            llm_query: Sub-model query function exposed to scripts
            executor: Script sandbox (default: RestrictedScriptExecutor)
            max_iterations: Iteration cap before a fallback answer is synthesized
            stdout_preview_length: Characters of stdout included in metadata
        """
        settings = get_settings()

        self.repo_content_loader = repo_content_loader
        self.repo = repo
        self.llm_query = llm_query
        self.executor = executor or RestrictedScriptExecutor()
        self.max_iterations = settings.max_iterations if max_iterations is None else max_iterations
        if self.max_iterations < 1:
            raise ConfigurationError(f"max_iterations must be at least 1, got {self.max_iterations}")
        self.stdout_preview_length = (
            settings.stdout_preview_length if stdout_preview_length is None else stdout_preview_length
        )

        self.state = EngineState()
        self.status = EngineStatus.AWAITING_SCRIPT
        self._context_loaded = False
        self._error_feedback: Optional[str] = None
        self._lock = asyncio.Lock()

    async def execute(self, script: str) -> EngineStepResult:
        """Run one script and advance the iteration.

        Script failures never raise; they are reported in ``error``.

        Raises:
            ContextLoadError: If the repository content loader fails
        """
        async with self._lock:
            await self._ensure_context()
            self._error_feedback = None
            self.status = EngineStatus.EXECUTING

            logger.info(
                "engine_iteration_started",
                iteration=self.state.iteration + 1,
                script_length=len(script),
            )

            try:
                result = await self.executor.execute(
                    script,
                    repo=self.repo,
                    llm_query=self.llm_query,
                    buffers=self.state.buffers,
                    context=self.state.context,
                )
            except asyncio.CancelledError:
                self.status = EngineStatus.AWAITING_SCRIPT
                raise
            except Exception as e:
                error = format_error(e)
                logger.error("engine_executor_failed", error=error)
                result = ExecutionResult(
                    stdout=f"Script Error: {error}",
                    buffers=self.state.buffers,
                    error=error,
                    outcome=ScriptOutcome.FAILED,
                )

            self.state.buffers = result.buffers
            self.state.stdout = result.stdout
            self.state.final_answer = result.final_answer
            self.state.iteration += 1

            if result.final_answer is not None:
                logger.info(
                    "engine_completed_with_final_answer",
                    answer_length=len(result.final_answer),
                    iterations=self.state.iteration,
                )
                self.status = EngineStatus.COMPLETED
                return self._step(result, is_complete=True, final_answer=result.final_answer)

            if self.state.iteration >= self.max_iterations:
                logger.warning("engine_max_iterations_reached", iterations=self.state.iteration)
                self.status = EngineStatus.COMPLETED
                summary = summarize_iterations(self.state, self.max_iterations)
                return self._step(result, is_complete=True, final_answer=summary)

            if result.error:
                logger.info("engine_script_failed", iteration=self.state.iteration, error=result.error)
            self.status = EngineStatus.AWAITING_SCRIPT
            return self._step(result, is_complete=False)

    def get_metadata(self) -> RLMMetadata:
        """Bounded metadata for the next prompt; consumes pending error feedback."""
        metadata = build_metadata(
            self.state,
            preview_length=self.stdout_preview_length,
            error_feedback=self._error_feedback,
        )
        self._error_feedback = None
        return metadata

    def get_state(self) -> EngineState:
        """Snapshot of the engine state (buffers shallow-copied)."""
        return EngineState(
            context=self.state.context,
            buffers=dict(self.state.buffers),
            stdout=self.state.stdout,
            iteration=self.state.iteration,
            final_answer=self.state.final_answer,
        )

    def set_error_feedback(self, feedback: str) -> None:
        """Record an error to show once in the next ``get_metadata()``."""
        self._error_feedback = feedback

    async def _ensure_context(self) -> None:
        if self._context_loaded:
            return

        logger.info("engine_loading_context")
        try:
            content = self.repo_content_loader()
            if inspect.isawaitable(content):
                content = await content
        except Exception as e:
            logger.error("engine_context_load_failed", error=str(e))
            raise ContextLoadError(f"Failed to load repository content: {e}") from e

        self.state.context = "" if content is None else str(content)
        self._context_loaded = True
        logger.info("engine_context_loaded", context_length=len(self.state.context))

    def _step(
        self,
        result: ExecutionResult,
        is_complete: bool,
        final_answer: Optional[str] = None,
    ) -> EngineStepResult:
        return EngineStepResult(
            stdout=result.stdout,
            buffers=result.buffers,
            is_complete=is_complete,
            final_answer=final_answer,
            error=result.error,
            return_value=result.return_value,
        )
