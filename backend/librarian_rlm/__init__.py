"""Librarian RLM - recursive-language-model engine for repository research."""

from librarian_rlm.bridges.llm_query import create_llm_query
from librarian_rlm.bridges.repo import LocalRepoBridge, RepoBridge
from librarian_rlm.core.completion import parse_final_output, resolve_final_output
from librarian_rlm.core.engine import RLMEngine
from librarian_rlm.core.loop import ResearchLoop
from librarian_rlm.core.research import research_repository
from librarian_rlm.llm.client import LiteLLMClient, MockLLMClient
from librarian_rlm.sandbox.executor import RestrictedScriptExecutor
from librarian_rlm.trajectory.logger import TrajectoryLogger
from librarian_rlm.types import EngineStepResult, ExecutionResult, ResearchResult, RLMMetadata

__version__ = "0.1.0"

__all__ = [
    # Engine
    "RLMEngine",
    "ResearchLoop",
    "research_repository",
    "parse_final_output",
    "resolve_final_output",
    # Sandbox
    "RestrictedScriptExecutor",
    # Bridges
    "RepoBridge",
    "LocalRepoBridge",
    "create_llm_query",
    # LLM clients
    "LiteLLMClient",
    "MockLLMClient",
    # Other
    "TrajectoryLogger",
    "ExecutionResult",
    "EngineStepResult",
    "RLMMetadata",
    "ResearchResult",
]
