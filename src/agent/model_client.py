"""LLM adapter used by AgentLoop.handle_message.

Only one call shape is needed: a non-streaming chat completion that may carry
tool calls. Transport-level failures are retried here; tool calls themselves
are never re-issued by this layer.
"""

from __future__ import annotations

import asyncio
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog
from openai import (
    NOT_GIVEN,
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    RateLimitError,
)

from src.infra.errors import LLMError

if TYPE_CHECKING:
    from openai.types.chat import ChatCompletion, ChatCompletionMessage

    from src.config.settings import OpenAISettings

logger = structlog.get_logger()

_TRANSIENT = (APIConnectionError, APITimeoutError, RateLimitError)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff for transient provider errors."""

    max_retries: int = 3
    base_delay: float = 1.0
    jitter: float = 0.5

    @property
    def attempts(self) -> int:
        return self.max_retries + 1

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the given (0-based) failed attempt."""
        if self.base_delay <= 0:
            return 0.0
        return self.base_delay * (2**attempt) + random.uniform(0, self.jitter)


class ModelClient(ABC):
    """What the execution loop needs from a model provider."""

    @abstractmethod
    async def chat_completion(
        self,
        messages: list[dict[str, Any]],
        model: str,
        *,
        tools: list[dict] | None = None,
        temperature: float | None = None,
    ) -> ChatCompletionMessage:
        """Return the assistant message: text content, tool_calls, or both."""
        ...


class OpenAICompatModelClient(ModelClient):
    """ModelClient over any OpenAI-compatible chat completions endpoint."""

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        *,
        retry: RetryPolicy | None = None,
        timeout: float = 60.0,
    ) -> None:
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout)
        self._retry = retry or RetryPolicy()

    @classmethod
    def from_settings(cls, settings: OpenAISettings) -> OpenAICompatModelClient:
        return cls(
            api_key=settings.api_key,
            base_url=settings.base_url,
            retry=RetryPolicy(
                max_retries=settings.max_retries,
                base_delay=settings.retry_base_delay,
            ),
            timeout=settings.timeout,
        )

    async def chat_completion(
        self,
        messages: list[dict[str, Any]],
        model: str,
        *,
        tools: list[dict] | None = None,
        temperature: float | None = None,
    ) -> ChatCompletionMessage:
        request: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "tools": tools or NOT_GIVEN,
        }
        if temperature is not None:
            request["temperature"] = temperature

        logger.debug(
            "chat_completion_request",
            model=model,
            message_count=len(messages),
            tool_count=len(tools or ()),
        )
        response = await self._create(request)
        if not response.choices:
            raise LLMError(f"Empty choices from provider (model={model})")

        message = response.choices[0].message
        logger.debug(
            "chat_completion_response",
            model=model,
            has_content=bool(message.content),
            tool_calls=len(message.tool_calls or ()),
        )
        return message

    async def _create(self, request: dict[str, Any]) -> ChatCompletion:
        """Issue one completion request, retrying transient failures.

        Status errors other than rate limits are not retried.
        """
        attempt = 0
        while True:
            try:
                return await self._client.chat.completions.create(**request)
            except _TRANSIENT as e:
                attempt += 1
                if attempt >= self._retry.attempts:
                    raise LLMError(
                        f"LLM call failed after {self._retry.attempts} attempts: {e}"
                    ) from e
                delay = self._retry.delay(attempt - 1)
                logger.warning(
                    "llm_retry",
                    attempt=attempt,
                    max_retries=self._retry.max_retries,
                    delay=round(delay, 2),
                    error=type(e).__name__,
                )
                await asyncio.sleep(delay)
            except APIStatusError as e:
                raise LLMError(f"LLM API error: {e.status_code} {e.message}") from e
