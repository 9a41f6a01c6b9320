"""Anthropic client wrapper — retries, token tracking, timeout-bounded async completion."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

import anthropic

from ambit.config import ANTHROPIC_API_KEY, EXTRACT_MODEL, LLM_TIMEOUT

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Response from an LLM call with usage tracking."""

    content: str
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""


class LLMClient:
    """Wrapper around the Anthropic SDK with retries and usage totals.

    `complete()` is the collaborator contract used by the graph engine: it
    never raises, and resolves to None when the service is unavailable.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ):
        self.api_key = api_key if api_key is not None else ANTHROPIC_API_KEY
        self.model = model or EXTRACT_MODEL
        self.timeout = timeout if timeout is not None else LLM_TIMEOUT
        self._client: anthropic.Anthropic | None = None
        self.total_input_tokens = 0
        self.total_output_tokens = 0

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    @property
    def client(self) -> anthropic.Anthropic:
        if self._client is None:
            self._client = anthropic.Anthropic(api_key=self.api_key)
        return self._client

    def chat(
        self,
        messages: list[dict],
        system: str = "",
        max_tokens: int = 600,
        model: str | None = None,
        temperature: float = 0.0,
    ) -> LLMResponse:
        """Send a chat completion request (blocking, with retries)."""
        kwargs: dict = {
            "model": model or self.model,
            "max_tokens": max_tokens,
            "messages": messages,
            "temperature": temperature,
        }
        if system:
            kwargs["system"] = system

        last_error = None
        for attempt in range(3):
            try:
                response = self.client.messages.create(**kwargs)
                break
            except (anthropic.RateLimitError, anthropic.APIConnectionError) as e:
                last_error = e
                time.sleep(2 ** attempt)
        else:
            raise last_error  # type: ignore

        content_text = ""
        for block in response.content:
            if block.type == "text":
                content_text += block.text

        usage = response.usage
        input_tokens = getattr(usage, "input_tokens", 0) or 0
        output_tokens = getattr(usage, "output_tokens", 0) or 0
        self.total_input_tokens += input_tokens
        self.total_output_tokens += output_tokens

        return LLMResponse(
            content=content_text,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=kwargs["model"],
        )

    async def complete(
        self,
        system: str,
        prompt: str,
        max_tokens: int = 600,
        model: str | None = None,
    ) -> str | None:
        """Single-turn completion raced against the timeout. None on any failure."""
        if not self.available:
            logger.debug("LLM skipped: no API key")
            return None
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(
                    self.chat,
                    [{"role": "user", "content": prompt}],
                    system=system,
                    max_tokens=max_tokens,
                    model=model,
                ),
                timeout=self.timeout,
            )
        except TimeoutError:
            logger.warning("LLM request timed out after %.0fs", self.timeout)
            return None
        except anthropic.APIError as e:
            logger.warning("LLM request failed: %s", e)
            return None
        return response.content or None
