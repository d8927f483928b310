"""LLM client interface and implementations using LiteLLM."""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from librarian_rlm.config import get_settings
from librarian_rlm.exceptions import LLMError
from librarian_rlm.types import LLMResponse

logger = structlog.get_logger()


class LLMClientInterface(ABC):
    """A chat model reachable with one system prompt and one user message.

    The research loop's controlling model and the sub-model behind
    ``llm_query()`` both go through this interface; neither keeps history.
    """

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """Generate a completion.

        Raises:
            LLMError: If the provider call fails after retries
        """
        ...

    @abstractmethod
    def get_model_name(self) -> str:
        ...


class LiteLLMClient(LLMClientInterface):
    """LLM client using LiteLLM for unified provider support.

    Works with any LiteLLM provider (OpenAI, Anthropic, Gemini, Azure,
    OpenAI-compatible endpoints, local vLLM/Ollama servers). Credentials come
    from the provider's usual environment variables (OPENAI_API_KEY,
    ANTHROPIC_API_KEY, GEMINI_API_KEY, ...).
    """

    def __init__(
        self,
        model: Optional[str] = None,
        provider: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: Optional[int] = None,
        max_retries: Optional[int] = None,
    ) -> None:
        """Initialize the LiteLLM client.

        Args:
            model: Model name (e.g., 'gpt-4.1', 'claude-sonnet-4-5')
            provider: Provider name (e.g., 'openai', 'anthropic')
            api_base: Custom API base URL
            timeout: Request timeout in seconds
            max_retries: Maximum attempts per call
        """
        settings = get_settings()

        self.model = model or settings.default_model
        self.provider = provider or settings.litellm_provider
        self.api_base = api_base or settings.litellm_api_base
        self.timeout = timeout or settings.llm_timeout
        self.max_retries = max_retries or settings.litellm_retry_count

        self._full_model = self._build_model_string()

        logger.info(
            "litellm_client_initialized",
            model=self.model,
            provider=self.provider,
            full_model=self._full_model,
        )

    def _build_model_string(self) -> str:
        """Build the full model string for LiteLLM.

        LiteLLM uses format: "provider/model" or just "model" for OpenAI
        """
        if "/" in self.model:
            return self.model
        if self.provider == "openai":
            return self.model
        return f"{self.provider}/{self.model}"

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """Generate a completion using LiteLLM, retrying transient failures."""
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(Exception),
                stop=stop_after_attempt(self.max_retries),
                wait=wait_exponential(multiplier=1, min=2, max=10),
                reraise=True,
            ):
                with attempt:
                    return await self._complete(messages, temperature, max_tokens, **kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "llm_generation_failed",
                model=self._full_model,
                error=str(e),
            )
            raise LLMError(str(e), provider=self.provider, model=self._full_model) from e
        raise LLMError("No completion attempts were made", provider=self.provider, model=self._full_model)

    async def _complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float,
        max_tokens: Optional[int],
        **kwargs: Any,
    ) -> LLMResponse:
        import litellm
        from litellm import acompletion

        litellm.set_verbose = False

        response = await acompletion(
            model=self._full_model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=self.timeout,
            api_base=self.api_base,
            **kwargs,
        )

        content = response.choices[0].message.content or ""

        usage = {}
        if getattr(response, "usage", None):
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        logger.debug(
            "llm_generation_complete",
            model=self._full_model,
            tokens_used=usage.get("total_tokens", 0),
        )

        return LLMResponse(
            content=content,
            model=self._full_model,
            usage=usage,
            finish_reason=response.choices[0].finish_reason,
        )

    def get_model_name(self) -> str:
        """Get the model name."""
        return self._full_model


class MockLLMClient(LLMClientInterface):
    """Mock LLM client for testing.

    Replays scripted ``responses`` in order (repeating the last one once they
    run out), or formats ``response_template`` when none are given. Every
    call is recorded in ``calls``.
    """

    def __init__(
        self,
        responses: Optional[Sequence[str]] = None,
        response_template: str = "Mock response for: {prompt}",
        delay: float = 0.0,
    ) -> None:
        """Initialize mock client.

        Args:
            responses: Replies returned in order
            response_template: Template for replies (can use {prompt})
            delay: Artificial delay in seconds to simulate network
        """
        self.responses = list(responses or [])
        self.response_template = response_template
        self.delay = delay
        self.call_count = 0
        self.calls: List[Dict[str, Any]] = []

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """Generate a mock completion."""
        self.call_count += 1
        self.calls.append({"prompt": prompt, "system_prompt": system_prompt})
        if self.delay:
            await asyncio.sleep(self.delay)

        if self.responses:
            content = self.responses[min(self.call_count, len(self.responses)) - 1]
        else:
            content = self.response_template.format(prompt=prompt[:100])

        return LLMResponse(
            content=content,
            model="mock-model",
            usage={"prompt_tokens": len(prompt), "completion_tokens": len(content)},
        )

    def get_model_name(self) -> str:
        """Get the model name."""
        return "mock-model"
