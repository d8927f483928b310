"""Research loop - drives the controlling LLM against an RLM engine."""

import asyncio
import re
import time
from typing import Any, AsyncIterator, Callable, Dict, Optional, Tuple

import structlog

from librarian_rlm.config import get_settings
from librarian_rlm.core.completion import resolve_final_output
from librarian_rlm.core.engine import RLMEngine
from librarian_rlm.llm.client import LLMClientInterface
from librarian_rlm.llm.prompts import get_research_prompt, get_rlm_system_prompt
from librarian_rlm.trajectory.logger import TrajectoryLogger
from librarian_rlm.types import (
    ResearchResult,
    StreamCallback,
    StreamEvent,
    StreamEventType,
    TrajectoryStepType,
)

logger = structlog.get_logger()

CODE_BLOCK_PATTERN = re.compile(r"```(?:python|py)?[ \t]*\r?\n(.*?)```", re.DOTALL)


def extract_script(text: str) -> Optional[str]:
    """Return the body of the first fenced Python block, if any."""
    match = CODE_BLOCK_PATTERN.search(text)
    if match is None:
        return None
    return match.group(1).strip("\n")


class ResearchLoop:
    """Runs the generate -> execute -> feed back metadata cycle.

    Example:
        ```python
        loop = ResearchLoop(engine, LiteLLMClient())
        result = await loop.run("How is authentication implemented?")
        print(result.answer)
        ```
    """

    def __init__(
        self,
        engine: RLMEngine,
        llm_client: LLMClientInterface,
        trajectory_logger: Optional[TrajectoryLogger] = None,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> None:
        """Initialize the loop.

        Args:
            engine: Engine holding the session state
            llm_client: Client for the controlling model
            trajectory_logger: Trajectory logger (creates default if not provided)
            system_prompt: Override for the controlling model's system prompt
            temperature: Sampling temperature (default from settings)
        """
        self.settings = get_settings()

        self.engine = engine
        self.llm_client = llm_client
        self.trajectory = trajectory_logger or TrajectoryLogger()
        self.system_prompt = system_prompt or get_rlm_system_prompt(self.settings.litellm_provider)
        self.temperature = (
            self.settings.default_temperature if temperature is None else temperature
        )

    async def run(
        self,
        query: str,
        session_id: Optional[str] = None,
        stream_callback: Optional[StreamCallback] = None,
    ) -> ResearchResult:
        """Answer ``query`` by iterating until the engine completes.

        Args:
            query: Question about the repository
            session_id: Optional session ID for tracking
            stream_callback: Optional callback receiving StreamEvents

        Returns:
            ResearchResult with the answer and run metadata

        Raises:
            asyncio.CancelledError: When interrupted (an ``interrupted`` event is emitted first)
        """
        start_time = time.time()
        session_id = self.trajectory.start_session(session_id)

        def emit(event_type: StreamEventType, data: Dict[str, Any]) -> None:
            if stream_callback:
                stream_callback(self.trajectory.create_stream_event(event_type, session_id, data))

        logger.info("research_started", session_id=session_id, query=query[:100])

        try:
            answer, completed_explicitly = await self._iterate(query, session_id, emit)
        except asyncio.CancelledError:
            iteration = self.engine.state.iteration
            logger.info("research_interrupted", session_id=session_id, iteration=iteration)
            self.trajectory.log_step(session_id, TrajectoryStepType.INTERRUPTED, {"iteration": iteration})
            self.trajectory.end_session(session_id)
            emit(StreamEventType.INTERRUPTED, {"iteration": iteration})
            raise
        except Exception as e:
            logger.error("research_failed", session_id=session_id, error=str(e))
            self.trajectory.log_step(
                session_id,
                TrajectoryStepType.ERROR,
                {"error": str(e), "error_type": type(e).__name__},
            )
            self.trajectory.end_session(session_id)
            emit(StreamEventType.ERROR, {"error": str(e), "fatal": True})
            raise

        execution_time = (time.time() - start_time) * 1000
        iterations = self.engine.state.iteration

        emit(
            StreamEventType.FINAL_RESULT,
            {
                "answer": answer,
                "iterations": iterations,
                "completed_explicitly": completed_explicitly,
                "execution_time_ms": execution_time,
            },
        )
        steps = self.trajectory.end_session(session_id, {"answer": answer})

        logger.info(
            "research_complete",
            session_id=session_id,
            iterations=iterations,
            completed_explicitly=completed_explicitly,
            execution_time_ms=execution_time,
        )

        return ResearchResult(
            answer=answer,
            session_id=session_id,
            iterations=iterations,
            completed_explicitly=completed_explicitly,
            execution_time_ms=execution_time,
            metadata={
                "model": self.llm_client.get_model_name(),
                "sandbox_type": self.engine.executor.get_sandbox_type(),
                "trajectory_steps": len(steps),
            },
        )

    async def stream(self, query: str, session_id: Optional[str] = None) -> AsyncIterator[StreamEvent]:
        """Run the loop and yield StreamEvents as they happen.

        The last event is ``final_result``, ``error`` (fatal) or
        ``interrupted`` when the consumer is cancelled.
        """
        queue: "asyncio.Queue[StreamEvent]" = asyncio.Queue()
        task = asyncio.create_task(self.run(query, session_id, stream_callback=queue.put_nowait))

        try:
            while not task.done() or not queue.empty():
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=0.1)
                except asyncio.TimeoutError:
                    continue
                yield event
        except asyncio.CancelledError:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            while not queue.empty():
                yield queue.get_nowait()
            return
        finally:
            if not task.done():
                task.cancel()

        if not task.cancelled():
            # Fatal errors were already delivered as an error event
            task.exception()

    async def _iterate(
        self,
        query: str,
        session_id: str,
        emit: Callable[[StreamEventType, Dict[str, Any]], None],
    ) -> Tuple[str, bool]:
        while True:
            iteration = self.engine.state.iteration + 1
            emit(StreamEventType.ITERATION_START, {"iteration": iteration})
            self.trajectory.log_step(session_id, TrajectoryStepType.ITERATION_START, {"iteration": iteration})

            metadata = self.engine.get_metadata()
            response = await self.llm_client.generate(
                prompt=get_research_prompt(query, metadata),
                system_prompt=self.system_prompt,
                temperature=self.temperature,
            )
            self.trajectory.log_step(
                session_id,
                TrajectoryStepType.ROOT_LLM_COMPLETE,
                {"content": response.content, "model": response.model, "usage": response.usage},
            )

            script = extract_script(response.content)
            if script is None:
                output = resolve_final_output(response.content, self.engine.state.buffers)
                if output.final_answer is not None:
                    logger.info("research_textual_final_answer", session_id=session_id)
                    return output.final_answer, True
                script = response.content

            emit(StreamEventType.SCRIPT_GENERATED, {"iteration": iteration, "script": script})
            self.trajectory.log_step(session_id, TrajectoryStepType.SCRIPT_EXECUTION_START, {"script": script})

            step = await self.engine.execute(script)

            self.trajectory.log_step(
                session_id,
                TrajectoryStepType.SCRIPT_EXECUTION_COMPLETE,
                {
                    "stdout": step.stdout,
                    "error": step.error,
                    "buffer_keys": list(step.buffers.keys()),
                    "is_complete": step.is_complete,
                },
            )
            emit(
                StreamEventType.SCRIPT_OUTPUT,
                {"iteration": iteration, "stdout": step.stdout, "error": step.error},
            )

            if step.error:
                self.engine.set_error_feedback(step.error)
                emit(StreamEventType.ERROR, {"iteration": iteration, "error": step.error, "fatal": False})

            if step.is_complete:
                completed_explicitly = self.engine.state.final_answer is not None
                if not completed_explicitly:
                    self.trajectory.log_step(
                        session_id,
                        TrajectoryStepType.ITERATION_LIMIT_HIT,
                        {"iterations": self.engine.state.iteration},
                    )
                return step.final_answer or "", completed_explicitly
