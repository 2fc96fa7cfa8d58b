"""
Claude API Client

Thin async wrapper around the Anthropic SDK used by the extraction
delegate. Calls are short, deterministic and JSON-only, so the wrapper:

- retries only rate limits and connection errors, with exponential backoff
- never sleeps after the final attempt
- rejects truncated or empty completions instead of returning half a JSON
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from anthropic import AsyncAnthropic, APIConnectionError, APIError, RateLimitError

from booking_bot.config import settings

logger = logging.getLogger(__name__)

_RETRYABLE = (RateLimitError, APIConnectionError)


class ClaudeClientError(Exception):
    """Raised when Claude API call fails."""
    pass


@dataclass
class ClaudeResponse:
    """Completion text plus usage metadata."""
    content: str
    model: str
    input_tokens: int
    output_tokens: int
    stop_reason: str
    latency_ms: float


def _joined_text(message: Any) -> str:
    """Concatenate the text blocks of a Messages API response."""
    parts = [
        block.text for block in (message.content or [])
        if getattr(block, "type", "text") == "text"
    ]
    return "".join(parts).strip()


class ClaudeClient:
    """Async Claude client for short structured completions."""

    _instance: Optional["ClaudeClient"] = None

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        """Initialize Claude client.

        Args:
            api_key: Anthropic API key (defaults to settings)
            model: Default model (defaults to the extraction model)
        """
        self.api_key = api_key or settings.anthropic_api_key
        if not self.api_key:
            raise ValueError("Anthropic API key is required")

        self._client = AsyncAnthropic(api_key=self.api_key)
        self.model = model or settings.claude_extraction_model

        logger.info(f"ClaudeClient initialized with model={self.model}")

    @classmethod
    def get_instance(cls) -> "ClaudeClient":
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: int = 1024,
        temperature: float = 0.0,
        max_retries: int = 3,
    ) -> ClaudeResponse:
        """
        Run one completion.

        Args:
            prompt: User message
            system_prompt: System prompt (optional)
            model: Model override
            max_tokens: Maximum tokens in response
            temperature: Sampling temperature (0.0 for deterministic)
            max_retries: Total attempts on rate limits / connection errors

        Returns:
            ClaudeResponse with the completion text

        Raises:
            ClaudeClientError: call failed, was truncated or came back empty
        """
        request: dict[str, Any] = {
            "model": model or self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            request["system"] = system_prompt

        started = time.monotonic()
        try:
            message = await self._create(request, max(1, max_retries))
        except APIError as e:
            logger.error(f"Claude API error: {e}")
            raise ClaudeClientError(f"Claude API call failed: {e}") from e
        latency_ms = (time.monotonic() - started) * 1000

        if message.stop_reason == "max_tokens":
            raise ClaudeClientError(f"Completion truncated at {max_tokens} tokens")

        text = _joined_text(message)
        if not text:
            raise ClaudeClientError("Claude returned an empty response")

        return ClaudeResponse(
            content=text,
            model=request["model"],
            input_tokens=message.usage.input_tokens,
            output_tokens=message.usage.output_tokens,
            stop_reason=message.stop_reason,
            latency_ms=latency_ms,
        )

    async def _create(self, request: dict[str, Any], attempts: int) -> Any:
        """messages.create with backoff on retryable errors."""
        for attempt in range(1, attempts + 1):
            try:
                return await self._client.messages.create(**request)
            except _RETRYABLE as e:
                if attempt == attempts:
                    raise ClaudeClientError(f"Max retries exceeded: {e}") from e
                delay = 2 ** (attempt - 1)
                logger.warning(f"{type(e).__name__}, retrying in {delay}s (attempt {attempt}/{attempts})")
                await asyncio.sleep(delay)

    async def close(self) -> None:
        """Close the client."""
        await self._client.close()


# Singleton accessor
async def get_claude_client() -> ClaudeClient:
    """Get Claude client singleton instance."""
    return ClaudeClient.get_instance()
