"""Typed failures raised by the transcription and extraction stages."""


class PipelineError(Exception):
    """Base class for pipeline failures. ``retryable`` drives retry policy."""

    kind = "ERROR"

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.message = message
        self.retryable = retryable


class TranscriptionError(PipelineError):
    """kind: NO_AUDIO, INVALID_AUDIO, API_ERROR, NETWORK_ERROR, TIMEOUT, NO_SPEECH_DETECTED."""

    def __init__(self, kind: str, message: str, retryable: bool = True):
        super().__init__(message, retryable)
        self.kind = kind


class ExtractionError(PipelineError):
    """kind: API_ERROR, PARSE_ERROR, VALIDATION_ERROR, NETWORK_ERROR, TIMEOUT, EMPTY_RESPONSE."""

    def __init__(self, kind: str, message: str, retryable: bool = True):
        super().__init__(message, retryable)
        self.kind = kind


class DraftNotFoundError(PipelineError):
    """The draft a queue item points at has been deleted."""

    kind = "DRAFT_NOT_FOUND"

    def __init__(self, draft_id: str):
        super().__init__(f"Draft {draft_id} not found", retryable=False)
        self.draft_id = draft_id


class StageTimeoutError(PipelineError):
    """An external call exceeded the per-stage watchdog."""

    kind = "TIMEOUT"

    def __init__(self, stage: str, timeout_seconds: float):
        super().__init__(f"{stage} timed out after {timeout_seconds:g}s", retryable=True)
        self.stage = stage
