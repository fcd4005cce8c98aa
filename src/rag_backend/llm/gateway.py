"""LLM gateway utilities."""

from typing import Any, Protocol, runtime_checkable

import litellm
from loguru import logger

from ..config import Config
from ..retry import DEFAULT_RETRY_POLICY, RetryPolicy

ChatMessage = dict[str, str]


@runtime_checkable
class CompletionClient(Protocol):
    """Chat completion: messages in, text out."""

    model: str

    async def complete(
        self,
        messages: list[ChatMessage],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Return the assistant message text."""


async def model_call(model: str, messages: list[ChatMessage], **kwargs: Any) -> Any:
    """
    Forward an LLM completion call through the configured client.

    Args:
        model: Model identifier.
        messages: Chat messages for the completion.
        **kwargs: Additional parameters, including optional llm_client.

    Returns:
        LLM response object.
    """
    llm_client = kwargs.pop("llm_client", None) or litellm
    return await llm_client.acompletion(model=model, messages=messages, **kwargs)


class LiteLLMCompletionClient:
    """CompletionClient backed by litellm, so any provider litellm routes to works."""

    def __init__(
        self,
        model: str = Config.LLM_MODEL,
        temperature: float = Config.LLM_TEMPERATURE,
        max_tokens: int = Config.LLM_MAX_TOKENS,
        retry: RetryPolicy = DEFAULT_RETRY_POLICY,
        llm_client: Any = None,
    ):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.retry = retry
        self.llm_client = llm_client

    async def complete(
        self,
        messages: list[ChatMessage],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        response = await self.retry.call(
            lambda: model_call(
                self.model,
                messages,
                temperature=self.temperature if temperature is None else temperature,
                max_tokens=max_tokens or self.max_tokens,
                llm_client=self.llm_client,
            ),
            f"completion ({self.model})",
        )
        content = response.choices[0].message.content or ""
        logger.debug(f"Completion received from {self.model} ({len(content)} chars)")
        return content
