"""Async Claude API wrapper used for invoice extraction."""
import asyncio
from typing import Optional

import anthropic

from quickquote.ai.errors import ExtractionError


def map_anthropic_error(exc: Exception) -> ExtractionError:
    """Translate an Anthropic SDK exception into a typed ExtractionError."""
    if isinstance(exc, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        return ExtractionError("API_ERROR", "Invalid API key", retryable=False)
    if isinstance(exc, anthropic.RateLimitError):
        return ExtractionError("API_ERROR", "Rate limit exceeded", retryable=True)
    if isinstance(exc, anthropic.APITimeoutError):
        return ExtractionError("TIMEOUT", "Extraction request timed out", retryable=True)
    if isinstance(exc, anthropic.APIConnectionError):
        return ExtractionError("NETWORK_ERROR", "Network request failed", retryable=True)
    if isinstance(exc, anthropic.APIStatusError):
        return ExtractionError("API_ERROR", str(exc), retryable=exc.status_code >= 500)
    return ExtractionError("API_ERROR", str(exc), retryable=True)


class ClaudeClient:
    """Thin async wrapper over the Anthropic SDK."""

    def __init__(self, api_key: str, model: str = "claude-sonnet-4-5", request_timeout: float = 30.0):
        # SDK retries are disabled; InvoiceExtractor owns the retry policy
        self._client = anthropic.Anthropic(api_key=api_key, max_retries=0, timeout=request_timeout)
        self.model = model
        self.request_timeout = request_timeout

    async def complete(
        self,
        user_prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 1024,
        temperature: float = 0.1,
    ) -> str:
        """
        Send a message to Claude and return the response text.
        Runs the sync SDK call in a thread pool executor, bounded by
        request_timeout. SDK failures surface as ExtractionError.
        """
        loop = asyncio.get_event_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(
                    None,
                    lambda: self._complete_sync(user_prompt, system_prompt, max_tokens, temperature),
                ),
                timeout=self.request_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ExtractionError("TIMEOUT", "Extraction request timed out", retryable=True) from exc

    def _complete_sync(
        self,
        user_prompt: str,
        system_prompt: Optional[str],
        max_tokens: int,
        temperature: float = 0.1,
    ) -> str:
        kwargs = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": user_prompt}],
        }
        if system_prompt:
            kwargs["system"] = system_prompt

        try:
            response = self._client.messages.create(**kwargs)
        except anthropic.AnthropicError as exc:
            raise map_anthropic_error(exc) from exc

        if not response.content:
            raise ExtractionError("EMPTY_RESPONSE", "No response from model", retryable=True)
        return response.content[0].text
