"""Restricted script executor.

Scripts run on a dedicated worker thread with its own event loop, so a
script stuck in a CPU loop cannot stall the host loop and the wall-clock
timeout always fires. Bridge calls made by the script (``repo.*`` and
``llm_query``) are marshalled back onto the host loop where the bridges
live.
"""

import asyncio
import inspect
import sys
import threading
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import structlog

from librarian_rlm.bridges.repo import Patterns, RepoBridge
from librarian_rlm.config import get_sandbox_settings
from librarian_rlm.exceptions import (
    BufferNotFoundError,
    ConfigurationError,
    ScriptError,
    ScriptTimeoutError,
)
from librarian_rlm.sandbox.base import ScriptSandboxInterface
from librarian_rlm.sandbox.policy import GlobalPolicy
from librarian_rlm.sandbox.transformer import (
    SCRIPT_FILENAME,
    SCRIPT_FUNCTION_NAME,
    compile_script,
)
from librarian_rlm.sandbox.utils import ScriptOutput, batch, chunk, stringify_value
from librarian_rlm.types import ExecutionResult, LLMQueryFn, ScriptOutcome

logger = structlog.get_logger()


class ScriptFinished(BaseException):
    """Unwinds a script once FINAL or FINAL_VAR has recorded an answer."""


class ScriptAborted(BaseException):
    """Raised inside a script that outlived its timeout."""


def format_error(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


class CompletionRecorder:
    """Backs the ``FINAL`` and ``FINAL_VAR`` intrinsics for one execution.

    The first recorded answer wins; both intrinsics stop the script.
    """

    def __init__(self, buffers: Dict[str, Any]) -> None:
        self.final_answer: Optional[str] = None
        self._buffers = buffers

    def final(self, answer: Any = "") -> None:
        if self.final_answer is None:
            self.final_answer = stringify_value(answer)
        raise ScriptFinished()

    def final_var(self, key: Any) -> None:
        key = str(key)
        if key not in self._buffers:
            raise BufferNotFoundError(key)
        if self.final_answer is None:
            self.final_answer = stringify_value(self._buffers[key])
        raise ScriptFinished()


class HostBridge:
    """Runs coroutines on the host event loop on behalf of the worker thread."""

    def __init__(self, host_loop: asyncio.AbstractEventLoop) -> None:
        self.host_loop = host_loop
        self._pending: Set[Any] = set()

    async def call(self, coro: Awaitable[Any]) -> Any:
        future = asyncio.run_coroutine_threadsafe(coro, self.host_loop)
        self._pending.add(future)
        try:
            return await asyncio.wrap_future(future)
        finally:
            self._pending.discard(future)

    def cancel_pending(self) -> None:
        for future in list(self._pending):
            future.cancel()
        self._pending.clear()


async def _invoke(fn: Callable[..., Any], *args: Any) -> Any:
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class ScriptRepo:
    """Script-facing ``repo`` object.

    Every method is a coroutine; results are the JSON strings the
    repository bridge produces.
    """

    def __init__(self, repo: RepoBridge, host: HostBridge) -> None:
        self._repo = repo
        self._host = host

    async def list(
        self,
        directory_path: str = ".",
        recursive: bool = False,
        max_depth: int = 1,
        include_hidden: bool = False,
    ) -> str:
        return await self._host.call(
            self._repo.list(
                directory_path,
                recursive=recursive,
                max_depth=max_depth,
                include_hidden=include_hidden,
            )
        )

    async def view(self, file_path: str, view_range: Optional[List[int]] = None) -> str:
        return await self._host.call(self._repo.view(file_path, view_range=view_range))

    async def find(
        self,
        patterns: Patterns,
        search_path: str = ".",
        exclude: Optional[Patterns] = None,
        max_results: Optional[int] = None,
        recursive: bool = True,
    ) -> str:
        return await self._host.call(
            self._repo.find(
                patterns,
                search_path=search_path,
                exclude=exclude,
                max_results=max_results,
                recursive=recursive,
            )
        )

    async def grep(
        self,
        query: str,
        search_path: str = ".",
        patterns: Optional[Patterns] = None,
        regex: bool = False,
        case_sensitive: bool = False,
        max_results: Optional[int] = None,
        context_before: int = 0,
        context_after: int = 0,
    ) -> str:
        return await self._host.call(
            self._repo.grep(
                query,
                search_path=search_path,
                patterns=patterns,
                regex=regex,
                case_sensitive=case_sensitive,
                max_results=max_results,
                context_before=context_before,
                context_after=context_after,
            )
        )


class ScriptThread:
    """Owns the worker thread and event loop of a single script run."""

    def __init__(self, script_fn: Callable[[], Any]) -> None:
        self._script_fn = script_fn
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional["asyncio.Task[Any]"] = None
        self._aborted = threading.Event()

    def run(self) -> Any:
        sys.settrace(self._trace_calls)
        try:
            return asyncio.run(self._main())
        finally:
            sys.settrace(None)

    async def _main(self) -> Any:
        self._loop = asyncio.get_running_loop()
        self._task = asyncio.current_task()
        if self._aborted.is_set():
            raise ScriptAborted()

        coro = self._script_fn()
        if not inspect.iscoroutine(coro):
            raise ScriptError("'yield' is not allowed at the top level of a script")
        try:
            return await coro
        except ScriptFinished:
            return None

    def abort(self) -> None:
        """Stop the script: cancel its pending await and interrupt running lines."""
        self._aborted.set()
        loop, task = self._loop, self._task
        if loop is None or task is None:
            return
        try:
            loop.call_soon_threadsafe(task.cancel)
        except RuntimeError:
            # Worker loop already closed
            pass

    def _trace_calls(self, frame, event, arg):
        if frame.f_code.co_filename != SCRIPT_FILENAME:
            return None
        return self._trace_lines

    def _trace_lines(self, frame, event, arg):
        if event == "line" and self._aborted.is_set():
            raise ScriptAborted()
        return self._trace_lines


class RestrictedScriptExecutor(ScriptSandboxInterface):
    """In-process sandbox built on RestrictedPython.

    Example:
        ```python
        executor = RestrictedScriptExecutor(timeout=5)
        result = await executor.execute(
            'buffers["n"] = 1\\nprint("hi")', repo=None, llm_query=None, buffers={}
        )
        assert result.stdout == "hi"
        ```
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        policy: Optional[GlobalPolicy] = None,
        max_script_length: Optional[int] = None,
    ) -> None:
        """Initialize the executor.

        Args:
            timeout: Default wall-clock ceiling per script in seconds
            policy: Global allow/deny policy (default: built from settings)
            max_script_length: Maximum script length in characters
        """
        sandbox_settings = get_sandbox_settings()

        self.timeout = sandbox_settings.script_timeout if timeout is None else timeout
        if self.timeout <= 0:
            raise ConfigurationError(f"Script timeout must be positive, got {self.timeout}")
        self.max_script_length = (
            sandbox_settings.max_script_length if max_script_length is None else max_script_length
        )
        self.policy = policy or GlobalPolicy(
            allowed_modules=sandbox_settings.allowed_modules,
            blocked_names=sandbox_settings.blocked_names,
        )

        logger.info(
            "restricted_executor_initialized",
            timeout=self.timeout,
            allowed_modules=len(self.policy.allowed_modules),
        )

    def get_sandbox_type(self) -> str:
        """Get sandbox type."""
        return "restricted"

    async def execute(
        self,
        script: str,
        repo: Optional[RepoBridge],
        llm_query: Optional[LLMQueryFn],
        buffers: Optional[Dict[str, Any]] = None,
        context: str = "",
        timeout: Optional[float] = None,
    ) -> ExecutionResult:
        """Execute a script with timeout and restrictions."""
        execution_timeout = self.timeout if timeout is None else timeout
        if execution_timeout <= 0:
            raise ConfigurationError(f"Script timeout must be positive, got {execution_timeout}")
        buffers = {} if buffers is None else buffers
        output = ScriptOutput()
        completion = CompletionRecorder(buffers)
        host = HostBridge(asyncio.get_running_loop())
        sub_llm_calls = 0
        start_time = time.time()

        async def script_llm_query(instruction: Any, data: Any = "") -> str:
            nonlocal sub_llm_calls
            if llm_query is None:
                raise ScriptError("llm_query is not available in this session")
            sub_llm_calls += 1
            return await host.call(_invoke(llm_query, str(instruction), stringify_value(data)))

        def build_result(
            return_value: Any = None,
            error: Optional[BaseException] = None,
        ) -> ExecutionResult:
            error_text = format_error(error) if error is not None else None
            if error_text is not None:
                output.lines.append(f"Script Error: {error_text}")
                outcome = ScriptOutcome.FAILED
            elif completion.final_answer is not None:
                outcome = ScriptOutcome.FINALIZED
            elif return_value is not None:
                outcome = ScriptOutcome.RETURNED
            else:
                outcome = ScriptOutcome.CONTINUED

            return ExecutionResult(
                stdout=output.getvalue(),
                buffers=buffers,
                final_answer=completion.final_answer,
                error=error_text,
                return_value=return_value if completion.final_answer is None else None,
                outcome=outcome,
                execution_time_ms=(time.time() - start_time) * 1000,
                sub_llm_calls=sub_llm_calls,
            )

        if len(script) > self.max_script_length:
            return build_result(error=ScriptError(
                f"Script too long: {len(script)} characters (max: {self.max_script_length})"
            ))

        logger.debug("script_execution_started", script_length=len(script), timeout=execution_timeout)

        try:
            code = compile_script(script)
            script_globals = self.policy.build_globals({
                "_print_": output.collector,
                "context": context,
                "buffers": buffers,
                "repo": ScriptRepo(repo, host) if repo is not None else None,
                "llm_query": script_llm_query,
                "chunk": chunk,
                "batch": batch,
                "FINAL": completion.final,
                "FINAL_VAR": completion.final_var,
            })
            exec(code, script_globals)
            runner = ScriptThread(script_globals[SCRIPT_FUNCTION_NAME])
            return_value = await self._run(runner, host, execution_timeout)
        except asyncio.CancelledError:
            logger.info("script_execution_cancelled")
            raise
        except ScriptTimeoutError as e:
            logger.warning("script_execution_timeout", timeout=execution_timeout)
            return build_result(error=e)
        except Exception as e:
            logger.warning("script_execution_failed", error=format_error(e))
            return build_result(error=e)

        result = build_result(return_value=return_value)
        logger.info(
            "script_execution_complete",
            outcome=result.outcome.value,
            execution_time_ms=round(result.execution_time_ms, 2),
            sub_llm_calls=sub_llm_calls,
        )
        return result

    async def _run(self, runner: ScriptThread, host: HostBridge, timeout: float) -> Any:
        host_loop = host.host_loop
        done = host_loop.create_future()

        def settle(exc: Optional[BaseException], value: Any) -> None:
            if done.done():
                return
            if exc is not None:
                done.set_exception(exc)
            else:
                done.set_result(value)

        def target() -> None:
            exc: Optional[BaseException] = None
            value: Any = None
            try:
                value = runner.run()
            except asyncio.CancelledError:
                exc = ScriptError("Script was cancelled")
            except BaseException as e:
                exc = e
            try:
                host_loop.call_soon_threadsafe(settle, exc, value)
            except RuntimeError:
                # Host loop closed while the script was still running
                pass

        thread = threading.Thread(target=target, name="rlm-script", daemon=True)
        thread.start()
        try:
            return await asyncio.wait_for(done, timeout)
        except asyncio.TimeoutError:
            runner.abort()
            host.cancel_pending()
            raise ScriptTimeoutError(timeout) from None
        except asyncio.CancelledError:
            runner.abort()
            host.cancel_pending()
            raise
