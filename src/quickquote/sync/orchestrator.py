"""
SyncOrchestrator: decides when the queue gets processed.

State machine: idle -> syncing -> completed | error. The terminal state is
kept (for display) until the next pass starts. Auto-sync is an orthogonal
flag that lets connectivity changes and the retry sweep trigger passes.

Triggers are APScheduler jobs on the injected AsyncIOScheduler:
  - debounced_sync: one-shot date job, replaced on every "online"
    transition so a burst of reconnects collapses into a single pass
  - retry_sweep: interval job that picks up items whose backoff expired

sync_now() is the only entry point that runs a pass. At most one pass runs
at a time: the in-flight flag is claimed before the first await, which is
sufficient on a single event loop.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.exc import SQLAlchemyError

from quickquote.models.clock import now_ms
from quickquote.pipeline.processor import QueueProcessResult
from quickquote.sync.connectivity import ConnectivityState
from quickquote.sync.events import StatusEmitter

logger = logging.getLogger(__name__)

SYNC_DEBOUNCE_MS = 2000
MIN_SYNC_INTERVAL_MS = 30000
RETRY_SWEEP_SECONDS = 60

DEBOUNCED_SYNC_JOB_ID = "debounced_sync"
RETRY_SWEEP_JOB_ID = "retry_sweep"

OFFLINE_ERROR = "offline"
IN_PROGRESS_ERROR = "Sync already in progress"


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class SyncStatus:
    state: SyncState
    last_sync_at: Optional[int]  # ms since epoch
    last_error: Optional[str]
    is_auto_sync_enabled: bool


@dataclass
class SyncResult:
    success: bool
    process_result: Optional[QueueProcessResult] = None
    error: Optional[str] = None


class SyncOrchestrator:
    """Connectivity-aware driver for QueueProcessor.process_all()."""

    def __init__(
        self,
        processor,
        connectivity,
        scheduler: AsyncIOScheduler,
        *,
        debounce_ms: int = SYNC_DEBOUNCE_MS,
        min_sync_interval_ms: int = MIN_SYNC_INTERVAL_MS,
        retry_sweep_seconds: int = RETRY_SWEEP_SECONDS,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Args:
            processor: QueueProcessor (or AsyncMock in tests).
            connectivity: source with async get_state() and subscribe(callback).
            scheduler: AsyncIOScheduler owned by the caller; started/stopped
                by the caller, not by the orchestrator.
        """
        self.processor = processor
        self.connectivity = connectivity
        self.scheduler = scheduler
        self.debounce_ms = debounce_ms
        self.min_sync_interval_ms = min_sync_interval_ms
        self.retry_sweep_seconds = retry_sweep_seconds
        self.clock = clock

        self._emitter: StatusEmitter[SyncStatus] = StatusEmitter()
        self._state = SyncState.IDLE
        self._last_sync_at: Optional[int] = None
        self._last_error: Optional[str] = None
        self._auto_sync = False
        self._in_flight = False
        self._unsubscribe_network: Optional[Callable[[], None]] = None

    async def initialize(self) -> None:
        """
        Call once at startup. Requeues items interrupted by a previous
        shutdown and, when online, drains the queue once.
        """
        logger.info("Initializing sync orchestrator")
        try:
            self.processor.recover_interrupted()
        except SQLAlchemyError as exc:
            logger.warning("Could not recover interrupted items: %s", exc)

        state = await self._connectivity_state()
        if state.is_online:
            result = await self.sync_now()
            if not result.success:
                logger.warning("Initial sync failed: %s", result.error)

        self._notify()

    def start_auto_sync(self) -> None:
        if self._auto_sync:
            logger.info("Auto-sync already enabled")
            return

        logger.info("Starting auto-sync")
        self._auto_sync = True
        self._unsubscribe_network = self.connectivity.subscribe(self._on_connectivity)
        self.scheduler.add_job(
            self._run_scheduled_sync,
            trigger="interval",
            seconds=self.retry_sweep_seconds,
            id=RETRY_SWEEP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._notify()

    def stop_auto_sync(self) -> None:
        if not self._auto_sync:
            return

        logger.info("Stopping auto-sync")
        self._auto_sync = False
        if self._unsubscribe_network is not None:
            self._unsubscribe_network()
            self._unsubscribe_network = None
        self._cancel_job(DEBOUNCED_SYNC_JOB_ID)
        self._cancel_job(RETRY_SWEEP_JOB_ID)
        self._notify()

    def on_network_change(self, is_connected: bool, is_internet_reachable: Optional[bool] = None) -> None:
        """
        Schedule a sync debounce_ms after the latest "online" transition.
        Unknown reachability (None) counts as online.
        """
        is_online = is_connected and is_internet_reachable is not False
        logger.info(
            "Network changed: connected=%s, reachable=%s", is_connected, is_internet_reachable
        )

        if is_online and self._auto_sync:
            self._cancel_job(DEBOUNCED_SYNC_JOB_ID)
            self.scheduler.add_job(
                self._run_scheduled_sync,
                trigger="date",
                run_date=datetime.now(timezone.utc) + timedelta(milliseconds=self.debounce_ms),
                id=DEBOUNCED_SYNC_JOB_ID,
                replace_existing=True,
                misfire_grace_time=None,
            )

    async def sync_now(self) -> SyncResult:
        """Run one processing pass if allowed. Never raises."""
        if self._state == SyncState.SYNCING or self._in_flight:
            logger.info("Sync already in progress")
            return SyncResult(success=False, error=IN_PROGRESS_ERROR)

        if (
            self._last_sync_at is not None
            and self.clock() - self._last_sync_at < self.min_sync_interval_ms
        ):
            logger.info("Skipping sync - too soon since last sync")
            return SyncResult(success=True)

        # Claimed before the first await so concurrent callers bail out above
        self._in_flight = True
        try:
            state = await self._connectivity_state()
            if not state.is_online:
                logger.info("Skipping sync - offline")
                return SyncResult(success=False, error=OFFLINE_ERROR)

            self._update_state(SyncState.SYNCING)
            logger.info("Starting sync...")

            try:
                result = await self.processor.process_all()
            except Exception as exc:
                message = str(exc) or exc.__class__.__name__
                self._update_state(SyncState.ERROR, message)
                logger.error("Sync failed: %s", message)
                return SyncResult(success=False, error=message)

            if result.failed > 0:
                self._update_state(SyncState.ERROR, f"{result.failed} items failed to sync")
            else:
                self._update_state(SyncState.COMPLETED)

            logger.info("Sync completed: %d/%d processed", result.processed, result.total)
            return SyncResult(success=result.failed == 0, process_result=result)
        finally:
            self._in_flight = False

    def get_sync_status(self) -> SyncStatus:
        return SyncStatus(
            state=self._state,
            last_sync_at=self._last_sync_at,
            last_error=self._last_error,
            is_auto_sync_enabled=self._auto_sync,
        )

    def add_listener(self, listener: Callable[[SyncStatus], None]) -> Callable[[], None]:
        """Listeners are called synchronously on every status change."""
        return self._emitter.add_listener(listener)

    def dispose(self) -> None:
        """Stop auto-sync, drop listeners and return to idle."""
        self.stop_auto_sync()
        self._state = SyncState.IDLE
        self._last_sync_at = None
        self._last_error = None
        self._emitter.clear()

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _on_connectivity(self, state: ConnectivityState) -> None:
        self.on_network_change(state.is_connected, state.is_internet_reachable)

    async def _run_scheduled_sync(self) -> None:
        """Job body for debounced and sweep syncs; must not raise."""
        try:
            result = await self.sync_now()
        except Exception:
            logger.warning("Auto-sync failed", exc_info=True)
            return
        if not result.success and result.error:
            logger.warning("Auto-sync failed: %s", result.error)

    async def _connectivity_state(self) -> ConnectivityState:
        try:
            return await self.connectivity.get_state()
        except Exception as exc:
            logger.warning("Connectivity probe failed, assuming offline: %s", exc)
            return ConnectivityState(is_connected=False, is_internet_reachable=False)

    def _update_state(self, state: SyncState, error: Optional[str] = None) -> None:
        self._state = state
        if state == SyncState.ERROR:
            self._last_error = error
        elif state == SyncState.COMPLETED:
            self._last_error = None
        if state in (SyncState.COMPLETED, SyncState.ERROR):
            self._last_sync_at = self.clock()
        self._notify()

    def _notify(self) -> None:
        self._emitter.emit(self.get_sync_status())

    def _cancel_job(self, job_id: str) -> None:
        if self.scheduler.get_job(job_id) is not None:
            self.scheduler.remove_job(job_id)
