"""
InvoiceExtractor: turns a transcript into a ParsedInvoice.

Flow:
  1. Main prompt, retried with exponential backoff on retryable failures
  2. If the main prompt is exhausted: one attempt with the short fallback
     prompt and a smaller token budget
  3. If the fallback answer cannot be parsed: an empty invoice carrying an
     explanatory note, so the recording is never lost
"""
import json
import logging
import re
from typing import Any, Dict, Optional

from pydantic import ValidationError

from quickquote.ai.errors import ExtractionError, PipelineError
from quickquote.ai.retry import retry_with_backoff
from quickquote.models.invoice import (
    ExtractionOptions,
    ParsedInvoice,
    build_invoice,
    empty_invoice,
)
from quickquote.prompts.invoice import build_fallback_prompt, build_invoice_extraction_prompt

logger = logging.getLogger(__name__)

MAIN_MAX_TOKENS = 1024
FALLBACK_MAX_TOKENS = 512

_CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def extract_json(text: str) -> str:
    """Strip markdown fences and surrounding chatter from a JSON answer."""
    cleaned = text.strip()
    block = _CODE_BLOCK_RE.search(cleaned)
    if block:
        cleaned = block.group(1).strip()
    obj = _OBJECT_RE.search(cleaned)
    if obj:
        return obj.group(0)
    return cleaned


def parse_invoice_json(text: str) -> Dict[str, Any]:
    try:
        raw = json.loads(extract_json(text))
    except ValueError as exc:
        raise ExtractionError(
            "PARSE_ERROR", "Failed to parse model response as JSON", retryable=True
        ) from exc
    if not isinstance(raw, dict):
        raise ExtractionError("VALIDATION_ERROR", "Model response is not a JSON object", retryable=True)
    if not isinstance(raw.get("items") or [], list):
        raise ExtractionError("VALIDATION_ERROR", "Model response items is not a list", retryable=True)
    return raw


def invoice_from_answer(text: str, transcript: str, options: ExtractionOptions) -> ParsedInvoice:
    """Parse a model answer into a ParsedInvoice; malformed shapes raise ExtractionError."""
    raw = parse_invoice_json(text)
    try:
        return build_invoice(raw, transcript, options)
    except ValidationError as exc:
        raise ExtractionError(
            "VALIDATION_ERROR",
            f"Model response has an invalid invoice shape: {exc.error_count()} errors",
            retryable=True,
        ) from exc


class InvoiceExtractor:
    """Extracts structured invoices with retries and a fallback prompt."""

    def __init__(
        self,
        claude,
        max_retries: int = 3,
        retry_initial_delay_ms: int = 1000,
        retry_max_delay_ms: int = 10000,
    ):
        """
        Args:
            claude: ClaudeClient instance (or AsyncMock in tests).
        """
        self.claude = claude
        self.max_retries = max_retries
        self.retry_initial_delay_ms = retry_initial_delay_ms
        self.retry_max_delay_ms = retry_max_delay_ms

    async def extract(
        self,
        transcript: str,
        options: Optional[ExtractionOptions] = None,
    ) -> ParsedInvoice:
        if not transcript or not transcript.strip():
            raise ExtractionError("EMPTY_RESPONSE", "No transcript to parse", retryable=False)
        options = options or ExtractionOptions()
        prompt = build_invoice_extraction_prompt(transcript, options)

        async def attempt() -> ParsedInvoice:
            text = await self.claude.complete(prompt, max_tokens=MAIN_MAX_TOKENS)
            if not text:
                raise ExtractionError("EMPTY_RESPONSE", "No response from model", retryable=True)
            return invoice_from_answer(text, transcript, options)

        try:
            return await retry_with_backoff(
                attempt,
                attempts=self.max_retries,
                initial_delay_ms=self.retry_initial_delay_ms,
                max_delay_ms=self.retry_max_delay_ms,
                label="Extraction",
            )
        except PipelineError as exc:
            if not exc.retryable:
                raise
            main_error = exc

        logger.info("Main extraction prompt failed (%s), trying fallback", main_error.message)
        try:
            return await self.fallback_extract(transcript, options)
        except PipelineError:
            raise main_error

    async def fallback_extract(self, transcript: str, options: ExtractionOptions) -> ParsedInvoice:
        """
        Single attempt with the short prompt. Transport failures raise;
        an unusable answer degrades to an empty invoice.
        """
        text = await self.claude.complete(
            build_fallback_prompt(transcript, options),
            max_tokens=FALLBACK_MAX_TOKENS,
        )
        if not text:
            raise ExtractionError("EMPTY_RESPONSE", "No fallback response", retryable=False)
        try:
            return invoice_from_answer(text, transcript, options)
        except ExtractionError:
            logger.warning("Fallback answer unusable; returning empty invoice")
            return empty_invoice(transcript, options)
