"""
QueueProcessor: drives queued drafts through transcription and extraction.

Flow for a single queue item:
  1. Claim the item ("processing"); skip it if another worker holds it
  2. Load the draft (missing draft = fatal, the work no longer exists)
  3. stt/both: transcribe if the draft has audio but no transcript, then
     checkpoint transcript + confidence on the draft
  4. parse/both: renew the lease, re-read the draft and extract if it has a
     transcript but no invoice, then checkpoint invoice JSON + parse confidence
  5. Mark the item "completed"

On any exception: bump retry_count; fatal errors and items at the retry
ceiling are marked "failed", everything else goes back to "pending" with a
backoff gate (next_eligible_at). The exception is re-raised so process_all
can count it.

Because each stage checkpoints to the DraftStore, a retried item resumes
at the first stage whose output is missing.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from quickquote.ai.errors import DraftNotFoundError, PipelineError, StageTimeoutError, TranscriptionError
from quickquote.models.clock import now_ms
from quickquote.models.draft import DraftSyncStatus
from quickquote.models.invoice import ExtractionOptions, average_confidence
from quickquote.models.queue import QueueItem, QueueItemStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRIES = 3
RETRY_BASE_DELAY_MS = 1000

# A claim older than this is treated as abandoned by a dead worker
PROCESSING_LEASE_MS = 10 * 60 * 1000


def get_retry_delay_ms(retry_count: int, base_delay_ms: int = RETRY_BASE_DELAY_MS) -> int:
    """Exponential backoff: base * 2**retry_count."""
    return base_delay_ms * (2 ** retry_count)


@dataclass
class ItemError:
    id: str
    error: str


@dataclass
class QueueProcessResult:
    processed: int = 0
    failed: int = 0
    total: int = 0
    errors: List[ItemError] = field(default_factory=list)


@dataclass
class QueueStatus:
    pending: int = 0
    processing: int = 0
    failed: int = 0
    total: int = 0


class QueueProcessor:
    """Runs the two-stage pipeline over the queue."""

    def __init__(
        self,
        queue,
        drafts,
        transcriber,
        extractor,
        settings_store=None,
        *,
        max_retries: int = MAX_RETRIES,
        retry_base_delay_ms: int = RETRY_BASE_DELAY_MS,
        stage_timeout_seconds: Optional[float] = None,
        processing_lease_ms: int = PROCESSING_LEASE_MS,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Args:
            queue: Queue instance.
            drafts: DraftStore instance.
            transcriber: object with async transcribe(audio_path) -> result
                carrying .transcript and .confidence (WhisperClient).
            extractor: object with async extract(transcript, options)
                -> ParsedInvoice (InvoiceExtractor).
            settings_store: SettingsStore supplying currency and tax rate;
                defaults are used when None.
            stage_timeout_seconds: outer watchdog per stage; None disables it.
                The clients time out each request themselves, so this must
                cover their whole retry loop (see retry_budget_seconds).
            processing_lease_ms: age after which a "processing" claim is
                considered abandoned by recover_interrupted().
            clock: millisecond clock, injectable for tests.
        """
        self.queue = queue
        self.drafts = drafts
        self.transcriber = transcriber
        self.extractor = extractor
        self.settings_store = settings_store
        self.max_retries = max_retries
        self.retry_base_delay_ms = retry_base_delay_ms
        self.stage_timeout_seconds = stage_timeout_seconds
        self.processing_lease_ms = processing_lease_ms
        self.clock = clock

    async def process_all(self) -> QueueProcessResult:
        """
        Process every runnable item, oldest first.

        The item list is a snapshot: anything enqueued during the pass waits
        for the next one. Item failures are reported in the result; only a
        failure to read the queue raises.
        """
        result = QueueProcessResult()

        items = self.queue.list_runnable(self.clock())
        result.total = len(items)

        if not items:
            logger.info("No pending items to process")
            return result

        logger.info("Processing %d pending items", len(items))

        for item in items:
            try:
                if not await self.process_one(item):
                    result.total -= 1
                    continue
                result.processed += 1
            except Exception as exc:
                message = _error_message(exc)
                result.failed += 1
                result.errors.append(ItemError(id=item.id, error=message))
                logger.warning("Item %s failed: %s", item.id, message)

        self.queue.purge_completed()

        logger.info(
            "Processed %d/%d, failed: %d", result.processed, result.total, result.failed
        )
        return result

    async def process_one(self, item: QueueItem) -> bool:
        """
        Run the pipeline for one item. Returns False when the item could not
        be claimed; raises if the claimed item did not complete.
        """
        claimed = self.queue.mark_processing(item.id, self.clock())
        if claimed is None:
            return False
        item = claimed
        logger.info("Processing item %s (type: %s)", item.id, item.type)

        try:
            draft = self.drafts.get(item.draft_id)
            if draft is None:
                raise DraftNotFoundError(item.draft_id)
            self.drafts.set_sync_status(item.draft_id, DraftSyncStatus.SYNCING)

            if item.needs_transcription and draft.audio_path and not draft.transcript:
                stt = await self._guard(
                    "Transcription", lambda: self.transcriber.transcribe(draft.audio_path)
                )
                self.drafts.set_transcript(item.draft_id, stt.transcript, stt.confidence)
                logger.info("STT completed for draft %s", item.draft_id)

            if item.needs_extraction:
                self.queue.heartbeat(item.id, self.clock())
                # Re-read to pick up a transcript written above or by an earlier pass
                draft = self.drafts.get(item.draft_id)
                if draft is None:
                    raise DraftNotFoundError(item.draft_id)
                if not draft.transcript:
                    raise TranscriptionError(
                        "NO_AUDIO", "Draft has no transcript to extract from", retryable=False
                    )
                if not draft.invoice_data:
                    transcript = draft.transcript
                    options = self._extraction_options()
                    invoice = await self._guard(
                        "Extraction", lambda: self.extractor.extract(transcript, options)
                    )
                    self.drafts.set_invoice(
                        item.draft_id,
                        invoice.model_dump_json(),
                        average_confidence(invoice),
                    )
                    logger.info("Parse completed for draft %s", item.draft_id)

            if not item.needs_extraction:
                # Transcript only; nothing left in flight for this draft
                self.drafts.set_sync_status(item.draft_id, DraftSyncStatus.LOCAL)

            self.queue.mark_completed(item.id)
            logger.info("Item %s completed successfully", item.id)

        except Exception as exc:
            self._record_failure(item, exc)
            raise
        return True

    def retry_failed_items(self) -> int:
        """
        Make failed items, and pending items waiting out a backoff, runnable
        on the next pass. retry_count is kept. Returns the number reset.
        """
        items = self.queue.list_pending()
        targets = [
            item
            for item in items
            if item.status == QueueItemStatus.FAILED.value
            or (
                item.status == QueueItemStatus.PENDING.value
                and item.last_error
                and item.retry_count < self.max_retries
            )
        ]

        logger.info("Retrying %d failed items", len(targets))
        for item in targets:
            self.queue.reset_to_pending(item.id)
            self.drafts.set_sync_status(item.draft_id, DraftSyncStatus.QUEUED)
        return len(targets)

    def recover_interrupted(self) -> int:
        """Requeue "processing" items whose lease expired (their worker died)."""
        return self.queue.recover_stale_processing(self.clock() - self.processing_lease_ms)

    def get_queue_status(self) -> QueueStatus:
        """Point-in-time counts for display. Read errors yield zeros."""
        try:
            items = self.queue.list_pending()
        except SQLAlchemyError as exc:
            logger.error("Failed to get queue status: %s", exc)
            return QueueStatus()

        return QueueStatus(
            pending=sum(1 for i in items if i.status == QueueItemStatus.PENDING.value),
            processing=sum(1 for i in items if i.status == QueueItemStatus.PROCESSING.value),
            failed=sum(1 for i in items if i.status == QueueItemStatus.FAILED.value),
            total=len(items),
        )

    # ─── Internal helpers ─────────────────────────────────────────────────────

    async def _guard(self, stage: str, call: Callable[[], Awaitable[T]]) -> T:
        """Await an external call under the per-stage watchdog."""
        if not self.stage_timeout_seconds:
            return await call()
        try:
            return await asyncio.wait_for(call(), timeout=self.stage_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise StageTimeoutError(stage, self.stage_timeout_seconds) from exc

    def _extraction_options(self) -> ExtractionOptions:
        if self.settings_store is None:
            return ExtractionOptions()
        return self.settings_store.extraction_options()

    def _record_failure(self, item: QueueItem, exc: Exception) -> None:
        message = _error_message(exc)
        fatal = isinstance(exc, PipelineError) and not exc.retryable

        if fatal:
            self.queue.mark_failed(item.id, message, item.retry_count)
            self.drafts.set_sync_status(item.draft_id, DraftSyncStatus.FAILED)
            logger.error("Item %s failed permanently: %s", item.id, message)
            return

        retry_count = item.retry_count + 1
        if retry_count >= self.max_retries:
            self.queue.mark_failed(item.id, message, retry_count)
            self.drafts.set_sync_status(item.draft_id, DraftSyncStatus.FAILED)
            logger.error("Item %s failed after %d retries", item.id, self.max_retries)
        else:
            next_eligible_at = self.clock() + get_retry_delay_ms(retry_count, self.retry_base_delay_ms)
            self.queue.mark_pending_for_retry(item.id, message, retry_count, next_eligible_at)
            self.drafts.set_sync_status(item.draft_id, DraftSyncStatus.QUEUED)
            logger.info(
                "Item %s will retry (attempt %d/%d)", item.id, retry_count, self.max_retries
            )


def _error_message(exc: Exception) -> str:
    return str(exc) or exc.__class__.__name__
