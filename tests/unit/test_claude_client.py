"""Tests for ClaudeClient: async wrapper over the Anthropic SDK.

We mock the Anthropic client entirely (no real API calls) and verify:
  - _complete_sync builds the correct payload
  - system_prompt is only included when provided
  - SDK exceptions map to typed ExtractionErrors
  - complete() delegates to the thread executor and returns text
"""
import time
from unittest.mock import MagicMock, patch

import anthropic
import httpx
import pytest

from quickquote.ai.claude_client import ClaudeClient, map_anthropic_error
from quickquote.ai.errors import ExtractionError
from quickquote.ai.extractor import FALLBACK_MAX_TOKENS, InvoiceExtractor

REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def status_response(code: int) -> httpx.Response:
    return httpx.Response(code, request=REQUEST)


@pytest.fixture
def mock_anthropic_client():
    """Anthropic.Anthropic client mock with messages.create stubbed."""
    client = MagicMock()
    response = MagicMock()
    response.content = [MagicMock(text='{"items": [], "total": 0}')]
    client.messages.create.return_value = response
    return client


@pytest.fixture
def claude(mock_anthropic_client):
    """ClaudeClient with a mock Anthropic backend."""
    with patch("quickquote.ai.claude_client.anthropic.Anthropic", return_value=mock_anthropic_client):
        return ClaudeClient(api_key="test-key", model="claude-sonnet-4-5")


class TestClaudeClientInit:
    def test_model_stored(self, claude):
        assert claude.model == "claude-sonnet-4-5"

    def test_default_model_is_sonnet(self):
        with patch("quickquote.ai.claude_client.anthropic.Anthropic"):
            c = ClaudeClient(api_key="k")
        assert "sonnet" in c.model.lower()

    def test_sdk_retries_disabled(self):
        with patch("quickquote.ai.claude_client.anthropic.Anthropic") as mock_anthropic:
            ClaudeClient(api_key="k", request_timeout=20.0)
        mock_anthropic.assert_called_once_with(api_key="k", max_retries=0, timeout=20.0)


class TestCompleteSyncPayload:
    def test_user_message_included(self, claude, mock_anthropic_client):
        claude._complete_sync("Extract items", system_prompt=None, max_tokens=500)
        call_kwargs = mock_anthropic_client.messages.create.call_args.kwargs
        assert call_kwargs["messages"] == [{"role": "user", "content": "Extract items"}]

    def test_system_prompt_included_when_provided(self, claude, mock_anthropic_client):
        claude._complete_sync("q", system_prompt="Return JSON only", max_tokens=100)
        call_kwargs = mock_anthropic_client.messages.create.call_args.kwargs
        assert call_kwargs.get("system") == "Return JSON only"

    def test_system_prompt_omitted_when_none(self, claude, mock_anthropic_client):
        claude._complete_sync("q", system_prompt=None, max_tokens=100)
        call_kwargs = mock_anthropic_client.messages.create.call_args.kwargs
        assert "system" not in call_kwargs

    def test_model_and_limits_passed_through(self, claude, mock_anthropic_client):
        claude._complete_sync("q", system_prompt=None, max_tokens=999, temperature=0.3)
        call_kwargs = mock_anthropic_client.messages.create.call_args.kwargs
        assert call_kwargs["model"] == "claude-sonnet-4-5"
        assert call_kwargs["max_tokens"] == 999
        assert call_kwargs["temperature"] == 0.3

    def test_returns_text_from_response(self, claude):
        result = claude._complete_sync("q", system_prompt=None, max_tokens=100)
        assert result == '{"items": [], "total": 0}'

    def test_empty_content_raises(self, claude, mock_anthropic_client):
        mock_anthropic_client.messages.create.return_value.content = []
        with pytest.raises(ExtractionError) as exc_info:
            claude._complete_sync("q", system_prompt=None, max_tokens=100)
        assert exc_info.value.kind == "EMPTY_RESPONSE"

    def test_sdk_error_is_mapped(self, claude, mock_anthropic_client):
        mock_anthropic_client.messages.create.side_effect = anthropic.APIConnectionError(request=REQUEST)
        with pytest.raises(ExtractionError) as exc_info:
            claude._complete_sync("q", system_prompt=None, max_tokens=100)
        assert exc_info.value.kind == "NETWORK_ERROR"
        assert exc_info.value.retryable is True


class TestMapAnthropicError:
    def test_auth_is_permanent(self):
        exc = anthropic.AuthenticationError("bad key", response=status_response(401), body=None)
        assert map_anthropic_error(exc).retryable is False

    def test_rate_limit_is_retryable(self):
        exc = anthropic.RateLimitError("slow down", response=status_response(429), body=None)
        err = map_anthropic_error(exc)
        assert err.retryable is True
        assert err.kind == "API_ERROR"

    def test_timeout(self):
        err = map_anthropic_error(anthropic.APITimeoutError(request=REQUEST))
        assert err.kind == "TIMEOUT"

    def test_overloaded_is_retryable(self):
        exc = anthropic.InternalServerError("overloaded", response=status_response(529), body=None)
        assert map_anthropic_error(exc).retryable is True

    def test_bad_request_is_permanent(self):
        exc = anthropic.BadRequestError("bad", response=status_response(400), body=None)
        assert map_anthropic_error(exc).retryable is False


class TestCompleteAsync:
    @pytest.mark.asyncio
    async def test_complete_returns_string(self, claude):
        result = await claude.complete("Extract items")
        assert isinstance(result, str)
        assert "items" in result

    @pytest.mark.asyncio
    async def test_complete_uses_defaults(self, claude, mock_anthropic_client):
        await claude.complete("q")
        call_kwargs = mock_anthropic_client.messages.create.call_args.kwargs
        assert call_kwargs["max_tokens"] == 1024
        assert call_kwargs["temperature"] == 0.1

    @pytest.mark.asyncio
    async def test_complete_propagates_typed_errors(self, claude, mock_anthropic_client):
        mock_anthropic_client.messages.create.side_effect = anthropic.APITimeoutError(request=REQUEST)
        with pytest.raises(ExtractionError):
            await claude.complete("q")

    @pytest.mark.asyncio
    async def test_hung_request_is_retryable_timeout(self, mock_anthropic_client):
        mock_anthropic_client.messages.create.side_effect = lambda **kwargs: time.sleep(0.3)
        with patch("quickquote.ai.claude_client.anthropic.Anthropic", return_value=mock_anthropic_client):
            client = ClaudeClient(api_key="k", request_timeout=0.05)

        with pytest.raises(ExtractionError) as exc_info:
            await client.complete("q")

        assert exc_info.value.kind == "TIMEOUT"
        assert exc_info.value.retryable is True


class TestTimeoutsReachFallback:
    @pytest.mark.asyncio
    async def test_hung_main_prompt_still_reaches_fallback(self, mock_anthropic_client):
        answer = MagicMock()
        answer.content = [MagicMock(text='{"items": [{"description": "Labour", "unitPrice": 500}]}')]
        calls = []

        def hang_until_fallback(**kwargs):
            calls.append(kwargs["max_tokens"])
            if kwargs["max_tokens"] != FALLBACK_MAX_TOKENS:
                time.sleep(0.3)
            return answer

        mock_anthropic_client.messages.create.side_effect = hang_until_fallback
        with patch("quickquote.ai.claude_client.anthropic.Anthropic", return_value=mock_anthropic_client):
            client = ClaudeClient(api_key="k", request_timeout=0.05)
        extractor = InvoiceExtractor(client, max_retries=2, retry_initial_delay_ms=0, retry_max_delay_ms=0)

        invoice = await extractor.extract("labour 500")

        assert invoice.total == 500
        assert calls[-1] == FALLBACK_MAX_TOKENS
        assert len(calls) == 3
