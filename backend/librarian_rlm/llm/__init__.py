"""LLM client module."""

from librarian_rlm.llm.client import LiteLLMClient, LLMClientInterface, MockLLMClient
from librarian_rlm.llm.prompts import (
    SUB_AGENT_SYSTEM_PROMPT,
    format_metadata_for_prompt,
    get_model_specific_instructions,
    get_research_prompt,
    get_rlm_system_prompt,
    get_sub_llm_system_prompt,
)

__all__ = [
    # Base clients
    "LLMClientInterface",
    "LiteLLMClient",
    "MockLLMClient",
    # Prompts
    "SUB_AGENT_SYSTEM_PROMPT",
    "get_rlm_system_prompt",
    "get_model_specific_instructions",
    "get_sub_llm_system_prompt",
    "get_research_prompt",
    "format_metadata_for_prompt",
]
