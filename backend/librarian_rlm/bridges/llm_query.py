"""Semantic query bridge backing the script-level ``llm_query()``."""

from typing import Optional

import structlog

from librarian_rlm.config import get_settings
from librarian_rlm.exceptions import LLMError
from librarian_rlm.llm.client import LLMClientInterface
from librarian_rlm.llm.prompts import format_sub_llm_input, get_sub_llm_system_prompt
from librarian_rlm.types import LLMQueryFn

logger = structlog.get_logger()

OUTPUT_OPEN_TAG = "<LLM_QUERY_OUTPUT>"
OUTPUT_CLOSE_TAG = "</LLM_QUERY_OUTPUT>"


def wrap_query_output(content: str) -> str:
    """Delimit a sub-model answer so it cannot be mistaken for script output."""
    return f"{OUTPUT_OPEN_TAG}\n{content}\n{OUTPUT_CLOSE_TAG}"


def create_llm_query(
    llm_client: LLMClientInterface,
    max_tokens: Optional[int] = None,
    temperature: float = 0.0,
) -> LLMQueryFn:
    """Create the ``llm_query(instruction, data)`` function scripts call.

    Every call is independent: the fixed system prompt plus one user message
    built from the instruction and the data, with no history.

    Args:
        llm_client: Client used for the sub-model calls
        max_tokens: Token ceiling per answer (default from settings)
        temperature: Sampling temperature

    Returns:
        Async function returning the wrapped answer text
    """
    token_limit = max_tokens or get_settings().sub_llm_max_tokens
    system_prompt = get_sub_llm_system_prompt()

    async def llm_query(instruction: str, data: str = "") -> str:
        logger.debug(
            "llm_query_invoked",
            model=llm_client.get_model_name(),
            instruction_length=len(instruction),
            data_length=len(data),
        )
        try:
            response = await llm_client.generate(
                prompt=format_sub_llm_input(instruction, data),
                system_prompt=system_prompt,
                temperature=temperature,
                max_tokens=token_limit,
            )
        except LLMError:
            raise
        except Exception as e:
            logger.error("llm_query_failed", error=str(e))
            raise LLMError(str(e), model=llm_client.get_model_name()) from e

        content = response.content or ""
        logger.debug("llm_query_completed", response_length=len(content))
        return wrap_query_output(content)

    return llm_query
