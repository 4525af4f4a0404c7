"""Model invocation boundary: ``GenerateText(system, prompt) -> text``.

Everything downstream treats the model as an opaque async callable and
assumes nothing about its output. Failures of the call itself (network,
auth, rate limiting) surface as ``anthropic`` exceptions and are not retried
here.
"""

from __future__ import annotations

from typing import Protocol

import anthropic
import structlog

from grocery.config import settings

log = structlog.get_logger("llm")


class TextGenerator(Protocol):
    async def __call__(self, system_prompt: str, user_prompt: str) -> str: ...


class AnthropicTextGenerator:
    """TextGenerator backed by the Anthropic messages API."""

    def __init__(
        self,
        client: anthropic.AsyncAnthropic,
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> None:
        self._client = client
        self.model = model or settings.llm_model
        self.max_tokens = max_tokens or settings.llm_max_tokens

    async def __call__(self, system_prompt: str, user_prompt: str) -> str:
        response = await self._client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )

        log.info(
            "llm_tokens",
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=self.model,
        )

        text = ""
        for block in response.content:
            if hasattr(block, "text"):
                text += block.text
        return text


_anthropic_client: anthropic.AsyncAnthropic | None = None


def _get_anthropic_client(api_key: str) -> anthropic.AsyncAnthropic:
    """Lazy singleton — reuses the connection pool across pipeline runs."""
    global _anthropic_client  # noqa: PLW0603
    if _anthropic_client is None:
        _anthropic_client = anthropic.AsyncAnthropic(api_key=api_key)
    return _anthropic_client


def default_generator() -> AnthropicTextGenerator:
    """Build the production generator from settings.

    Raises RuntimeError when no API key is configured; activity wrappers turn
    that into a non-retryable failure.
    """
    if not settings.anthropic_api_key:
        raise RuntimeError("ANTHROPIC_API_KEY not set")
    return AnthropicTextGenerator(_get_anthropic_client(settings.anthropic_api_key))
