"""Tests for OpenAICompatModelClient: empty-choices guard, retries, tool passthrough."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from openai import NOT_GIVEN, APIConnectionError, APIStatusError

from src.agent.model_client import OpenAICompatModelClient, RetryPolicy
from src.infra.errors import LLMError

_REQUEST = httpx.Request("POST", "https://llm.test/v1/chat/completions")


@pytest.fixture()
def client():
    return OpenAICompatModelClient(
        api_key="test-key", retry=RetryPolicy(max_retries=2, base_delay=0)
    )


def _make_response(*, choices=None):
    resp = MagicMock()
    resp.choices = choices if choices is not None else []
    return resp


def _make_choice(content="hello"):
    choice = MagicMock()
    choice.message.content = content
    choice.message.tool_calls = None
    return choice


def _stub(client, **kwargs):
    client._client = MagicMock()
    client._client.chat.completions.create = AsyncMock(**kwargs)
    return client._client.chat.completions.create


class TestChatCompletion:
    async def test_empty_choices_raises_llm_error(self, client):
        _stub(client, return_value=_make_response(choices=[]))
        with pytest.raises(LLMError, match="Empty choices"):
            await client.chat_completion([{"role": "user", "content": "hi"}], "test-model")

    async def test_returns_message(self, client):
        _stub(client, return_value=_make_response(choices=[_make_choice("response text")]))
        message = await client.chat_completion(
            [{"role": "user", "content": "hi"}], "test-model"
        )
        assert message.content == "response text"

    async def test_tools_omitted_when_empty(self, client):
        create = _stub(client, return_value=_make_response(choices=[_make_choice()]))
        await client.chat_completion([{"role": "user", "content": "hi"}], "m", tools=[])
        assert create.call_args.kwargs["tools"] is NOT_GIVEN
        assert "temperature" not in create.call_args.kwargs

    async def test_tools_and_temperature_forwarded(self, client):
        create = _stub(client, return_value=_make_response(choices=[_make_choice()]))
        schema = [{"type": "function", "function": {"name": "list_clients"}}]
        await client.chat_completion(
            [{"role": "user", "content": "hi"}], "m", tools=schema, temperature=0.2
        )
        assert create.call_args.kwargs["tools"] == schema
        assert create.call_args.kwargs["temperature"] == 0.2


class TestRetry:
    async def test_transient_error_retried(self, client):
        create = _stub(
            client,
            side_effect=[
                APIConnectionError(request=_REQUEST),
                _make_response(choices=[_make_choice("ok")]),
            ],
        )
        message = await client.chat_completion([{"role": "user", "content": "hi"}], "m")
        assert message.content == "ok"
        assert create.await_count == 2

    async def test_gives_up_after_max_retries(self, client):
        create = _stub(client, side_effect=APIConnectionError(request=_REQUEST))
        with pytest.raises(LLMError, match="after 3 attempts"):
            await client.chat_completion([{"role": "user", "content": "hi"}], "m")
        assert create.await_count == 3

    async def test_status_error_not_retried(self, client):
        response = httpx.Response(400, request=_REQUEST)
        create = _stub(
            client, side_effect=APIStatusError("bad request", response=response, body=None)
        )
        with pytest.raises(LLMError, match="400"):
            await client.chat_completion([{"role": "user", "content": "hi"}], "m")
        assert create.await_count == 1


class TestRetryPolicy:
    def test_backoff_doubles(self):
        policy = RetryPolicy(max_retries=3, base_delay=1.0, jitter=0)
        assert [policy.delay(i) for i in range(3)] == [1.0, 2.0, 4.0]
        assert policy.attempts == 4

    def test_zero_base_delay_never_sleeps(self):
        assert RetryPolicy(base_delay=0).delay(5) == 0.0

    def test_from_settings(self):
        from src.config.settings import OpenAISettings

        client = OpenAICompatModelClient.from_settings(
            OpenAISettings(api_key="k", max_retries=1, retry_base_delay=0.5)
        )
        assert client._retry == RetryPolicy(max_retries=1, base_delay=0.5)
