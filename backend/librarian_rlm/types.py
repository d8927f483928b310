"""Type definitions for the Librarian RLM engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union


class TrajectoryStepType(Enum):
    """Types of steps in a research trajectory."""

    ITERATION_START = auto()
    ROOT_LLM_COMPLETE = auto()
    SCRIPT_EXECUTION_START = auto()
    SCRIPT_EXECUTION_COMPLETE = auto()
    ERROR = auto()
    ITERATION_LIMIT_HIT = auto()
    INTERRUPTED = auto()
    FINAL_ANSWER = auto()


class StreamEventType(Enum):
    """Types of streaming events."""

    ITERATION_START = "iteration_start"
    SCRIPT_GENERATED = "script_generated"
    SCRIPT_OUTPUT = "script_output"
    ERROR = "error"
    FINAL_RESULT = "final_result"
    INTERRUPTED = "interrupted"


@dataclass
class StreamEvent:
    """Event for streaming updates."""

    type: StreamEventType
    session_id: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class LLMResponse:
    """Response from an LLM call."""

    content: str
    model: str
    usage: Dict[str, int] = field(default_factory=dict)
    finish_reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class ScriptOutcome(Enum):
    """How a script execution ended."""

    RETURNED = "returned"
    FINALIZED = "finalized"
    CONTINUED = "continued"
    FAILED = "failed"


@dataclass
class ExecutionResult:
    """Result of one sandboxed script execution."""

    stdout: str
    buffers: Dict[str, Any]
    final_answer: Optional[str] = None
    error: Optional[str] = None
    return_value: Any = None
    outcome: ScriptOutcome = ScriptOutcome.CONTINUED
    execution_time_ms: float = 0.0
    sub_llm_calls: int = 0


class EngineStatus(Enum):
    """Lifecycle states of an RLM engine."""

    AWAITING_SCRIPT = "awaiting_script"
    EXECUTING = "executing"
    COMPLETED = "completed"


@dataclass
class EngineState:
    """State persisted by an engine across iterations."""

    context: str = ""
    buffers: Dict[str, Any] = field(default_factory=dict)
    stdout: str = ""
    iteration: int = 0
    final_answer: Optional[str] = None


@dataclass
class EngineStepResult:
    """What a single ``RLMEngine.execute()`` call reports back."""

    stdout: str
    buffers: Dict[str, Any]
    is_complete: bool
    final_answer: Optional[str] = None
    error: Optional[str] = None
    return_value: Any = None


@dataclass
class BufferSummary:
    """Bounded view of one buffer entry."""

    key: str
    preview: str
    size: int


@dataclass
class RLMMetadata:
    """Constant-size projection of engine state for the next prompt.

    Never carries the repository context or full buffer values.
    """

    iteration: int
    stdout_preview: str
    stdout_length: int
    buffer_keys: List[str]
    buffer_summary: List[BufferSummary]
    has_context: bool
    error_feedback: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return asdict(self)


@dataclass
class FinalOutput:
    """Completion markers extracted from free text."""

    final_answer: Optional[str]
    cleaned_text: str
    final_var: Optional[str] = None


@dataclass
class ResearchResult:
    """Final result of a research loop run."""

    answer: str
    session_id: str
    iterations: int
    completed_explicitly: bool
    execution_time_ms: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)


# Type aliases
LLMQueryFn = Callable[[str, str], Awaitable[str]]
ContextLoader = Callable[[], Union[str, Awaitable[str]]]
StreamCallback = Callable[[StreamEvent], None]
