"""Tests for the Claude API wrapper."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from anthropic import APIConnectionError, BadRequestError, RateLimitError

from booking_bot.infra.claude import ClaudeClient, ClaudeClientError

API_URL = "https://api.anthropic.com/v1/messages"


def api_message(text='{"service": null}', stop_reason="end_turn"):
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        stop_reason=stop_reason,
        usage=SimpleNamespace(input_tokens=150, output_tokens=20),
    )


def rate_limited():
    request = httpx.Request("POST", API_URL)
    return RateLimitError("rate limited", response=httpx.Response(429, request=request), body=None)


def connection_error():
    return APIConnectionError(request=httpx.Request("POST", API_URL))


@pytest.fixture
def client():
    """ClaudeClient with the SDK call mocked out."""
    claude = ClaudeClient(api_key="test-key", model="claude-test")
    claude._client = MagicMock()
    claude._client.messages.create = AsyncMock()
    return claude


@pytest.fixture
def no_sleep():
    with patch("booking_bot.infra.claude.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


class TestGenerate:
    """Completions and retries."""

    @pytest.mark.asyncio
    async def test_success(self, client):
        client._client.messages.create.return_value = api_message('  {"time": "14:30"}\n')

        response = await client.generate("martes 14:30", max_tokens=200)

        assert response.content == '{"time": "14:30"}'
        assert response.model == "claude-test"
        assert response.input_tokens == 150
        kwargs = client._client.messages.create.call_args.kwargs
        assert kwargs["max_tokens"] == 200
        assert kwargs["temperature"] == 0.0
        assert "system" not in kwargs

    @pytest.mark.asyncio
    async def test_retries_rate_limit(self, client, no_sleep):
        client._client.messages.create.side_effect = [rate_limited(), api_message()]

        response = await client.generate("hola", max_retries=3)

        assert response.content == '{"service": null}'
        assert client._client.messages.create.await_count == 2
        no_sleep.assert_awaited_once_with(1)

    @pytest.mark.asyncio
    async def test_single_attempt_does_not_sleep(self, client, no_sleep):
        client._client.messages.create.side_effect = connection_error()

        with pytest.raises(ClaudeClientError, match="Max retries exceeded"):
            await client.generate("hola", max_retries=1)

        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_non_retryable_error(self, client, no_sleep):
        request = httpx.Request("POST", API_URL)
        client._client.messages.create.side_effect = BadRequestError(
            "bad request", response=httpx.Response(400, request=request), body=None
        )

        with pytest.raises(ClaudeClientError):
            await client.generate("hola", max_retries=3)

        assert client._client.messages.create.await_count == 1

    @pytest.mark.asyncio
    async def test_truncated_completion(self, client):
        client._client.messages.create.return_value = api_message('{"service": "Con', stop_reason="max_tokens")

        with pytest.raises(ClaudeClientError, match="truncated"):
            await client.generate("hola", max_tokens=5)

    @pytest.mark.asyncio
    async def test_empty_completion(self, client):
        client._client.messages.create.return_value = api_message("   ")

        with pytest.raises(ClaudeClientError, match="empty"):
            await client.generate("hola")

    def test_requires_api_key(self):
        with patch("booking_bot.infra.claude.settings") as mock_settings:
            mock_settings.anthropic_api_key = None

            with pytest.raises(ValueError):
                ClaudeClient()
