"""Async OpenAI Whisper wrapper for voice note transcription."""
import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import openai

from quickquote.ai.errors import TranscriptionError
from quickquote.ai.retry import retry_with_backoff
from quickquote.prompts.invoice import build_whisper_prompt

logger = logging.getLogger(__name__)

# Segments above this no-speech probability are treated as silence
NO_SPEECH_THRESHOLD = 0.8


@dataclass
class TranscriptionResult:
    transcript: str
    confidence: float  # 0..1
    segments: List[dict] = field(default_factory=list)
    processing_time_ms: int = 0


def segment_confidence(segments: List[dict]) -> float:
    """Mean per-segment probability derived from Whisper's avg_logprob."""
    scores = [
        math.exp(seg["avg_logprob"])
        for seg in segments
        if seg.get("avg_logprob") is not None
    ]
    if not scores:
        return 0.0
    return min(1.0, max(0.0, sum(scores) / len(scores)))


def map_openai_error(exc: Exception) -> TranscriptionError:
    """Translate an OpenAI SDK exception into a typed TranscriptionError."""
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return TranscriptionError("API_ERROR", "Invalid API key", retryable=False)
    if isinstance(exc, openai.BadRequestError):
        return TranscriptionError("INVALID_AUDIO", str(exc), retryable=False)
    if isinstance(exc, openai.RateLimitError):
        return TranscriptionError("API_ERROR", "Rate limit exceeded", retryable=True)
    if isinstance(exc, openai.APITimeoutError):
        return TranscriptionError("TIMEOUT", "Transcription request timed out", retryable=True)
    if isinstance(exc, openai.APIConnectionError):
        return TranscriptionError("NETWORK_ERROR", "Network request failed", retryable=True)
    if isinstance(exc, openai.APIStatusError):
        return TranscriptionError("API_ERROR", str(exc), retryable=exc.status_code >= 500)
    return TranscriptionError("API_ERROR", str(exc), retryable=True)


class WhisperClient:
    """Transcribes voice notes via OpenAI Whisper."""

    def __init__(
        self,
        api_key: str,
        max_retries: int = 3,
        retry_initial_delay_ms: int = 1000,
        retry_max_delay_ms: int = 10000,
        request_timeout: float = 30.0,
    ):
        # SDK retries are disabled; retry_with_backoff owns the policy
        self._client = openai.OpenAI(api_key=api_key, max_retries=0, timeout=request_timeout)
        self.request_timeout = request_timeout
        self.max_retries = max_retries
        self.retry_initial_delay_ms = retry_initial_delay_ms
        self.retry_max_delay_ms = retry_max_delay_ms

    async def transcribe(self, audio_path: Optional[str]) -> TranscriptionResult:
        """
        Transcribe an audio file. Retryable failures are retried with
        exponential backoff; permanent ones raise immediately.
        Runs the sync OpenAI call in a thread pool executor; each attempt is
        bounded by request_timeout.
        """
        if not audio_path:
            raise TranscriptionError("NO_AUDIO", "No audio path provided", retryable=False)
        path = Path(audio_path)
        if not path.is_file():
            raise TranscriptionError("INVALID_AUDIO", f"Audio file not found: {path}", retryable=False)

        started = time.monotonic()

        async def attempt() -> TranscriptionResult:
            loop = asyncio.get_event_loop()
            try:
                return await asyncio.wait_for(
                    loop.run_in_executor(None, lambda: self._transcribe_sync(path)),
                    timeout=self.request_timeout,
                )
            except asyncio.TimeoutError as exc:
                raise TranscriptionError(
                    "TIMEOUT", "Transcription request timed out", retryable=True
                ) from exc

        result = await retry_with_backoff(
            attempt,
            attempts=self.max_retries,
            initial_delay_ms=self.retry_initial_delay_ms,
            max_delay_ms=self.retry_max_delay_ms,
            label="Transcription",
        )
        result.processing_time_ms = int((time.monotonic() - started) * 1000)
        logger.info("Transcription completed in %dms", result.processing_time_ms)
        return result

    def _transcribe_sync(self, audio_path: Path) -> TranscriptionResult:
        try:
            with open(audio_path, "rb") as f:
                response = self._client.audio.transcriptions.create(
                    model="whisper-1",
                    file=f,
                    prompt=build_whisper_prompt(),
                    response_format="verbose_json",
                )
        except OSError as exc:
            raise TranscriptionError(
                "INVALID_AUDIO", f"Failed to read audio file: {exc}", retryable=False
            ) from exc
        except openai.OpenAIError as exc:
            raise map_openai_error(exc) from exc

        segments = [_segment_dict(seg) for seg in (getattr(response, "segments", None) or [])]
        text = (response.text or "").strip()

        if not text or (
            segments and all(seg.get("no_speech_prob", 0) > NO_SPEECH_THRESHOLD for seg in segments)
        ):
            raise TranscriptionError(
                "NO_SPEECH_DETECTED", "No speech was detected in the audio", retryable=False
            )

        return TranscriptionResult(
            transcript=text,
            confidence=segment_confidence(segments),
            segments=segments,
        )


def _segment_dict(segment) -> dict:
    if isinstance(segment, dict):
        return segment
    return {
        "text": getattr(segment, "text", ""),
        "avg_logprob": getattr(segment, "avg_logprob", None),
        "no_speech_prob": getattr(segment, "no_speech_prob", 0.0),
    }
