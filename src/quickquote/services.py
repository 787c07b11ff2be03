"""
Service wiring: builds the stores, clients, processor and orchestrator
once and hands them to whoever owns the process (CLI worker or API).
"""
import logging
from dataclasses import dataclass
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from quickquote.ai.retry import retry_budget_seconds
from quickquote.config import Settings, get_settings, validate_settings
from quickquote.pipeline.processor import QueueProcessor
from quickquote.store.drafts import DraftStore
from quickquote.store.queue import Queue
from quickquote.store.settings import SettingsStore
from quickquote.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

STAGE_TIMEOUT_MARGIN_SECONDS = 5


@dataclass
class Services:
    engine: object
    drafts: DraftStore
    queue: Queue
    settings_store: SettingsStore
    processor: QueueProcessor
    orchestrator: SyncOrchestrator
    scheduler: AsyncIOScheduler
    connectivity: object


def build_services(
    settings: Optional[Settings] = None,
    engine=None,
    connectivity=None,
    transcriber=None,
    extractor=None,
    scheduler: Optional[AsyncIOScheduler] = None,
) -> Services:
    """
    Assemble the pipeline. Any collaborator may be passed in to replace the
    default (tests pass fakes for the AI clients and connectivity).
    """
    settings = settings or get_settings()

    if engine is None:
        from quickquote.db.engine import get_engine
        engine = get_engine()

    missing = validate_settings(settings)
    if missing and (transcriber is None or extractor is None):
        logger.warning("Missing settings: %s - AI calls will fail", ", ".join(missing))

    if transcriber is None:
        from quickquote.ai.whisper_client import WhisperClient
        transcriber = WhisperClient(
            api_key=settings.openai_api_key,
            max_retries=settings.client_max_retries,
            retry_initial_delay_ms=settings.client_retry_initial_delay_ms,
            retry_max_delay_ms=settings.client_retry_max_delay_ms,
            request_timeout=settings.request_timeout_seconds,
        )
    if extractor is None:
        from quickquote.ai.claude_client import ClaudeClient
        from quickquote.ai.extractor import InvoiceExtractor
        extractor = InvoiceExtractor(
            ClaudeClient(
                api_key=settings.anthropic_api_key,
                model=settings.anthropic_model,
                request_timeout=settings.request_timeout_seconds,
            ),
            max_retries=settings.client_max_retries,
            retry_initial_delay_ms=settings.client_retry_initial_delay_ms,
            retry_max_delay_ms=settings.client_retry_max_delay_ms,
        )
    if connectivity is None:
        from quickquote.sync.connectivity import SocketConnectivitySource
        connectivity = SocketConnectivitySource(
            host=settings.connectivity_probe_host,
            port=settings.connectivity_probe_port,
        )
    if scheduler is None:
        from quickquote.scheduler.jobs import build_scheduler
        scheduler = build_scheduler(engine)

    drafts = DraftStore(engine)
    queue = Queue(engine)
    settings_store = SettingsStore(engine, settings)
    stage_timeout = stage_timeout_seconds(settings)

    processor = QueueProcessor(
        queue,
        drafts,
        transcriber,
        extractor,
        settings_store,
        max_retries=settings.max_queue_retries,
        retry_base_delay_ms=settings.queue_retry_base_delay_ms,
        stage_timeout_seconds=stage_timeout,
        # A live worker refreshes its lease between stages
        processing_lease_ms=max(settings.processing_lease_ms, int(stage_timeout * 2 * 1000)),
    )
    orchestrator = SyncOrchestrator(
        processor,
        connectivity,
        scheduler,
        debounce_ms=settings.sync_debounce_ms,
        min_sync_interval_ms=settings.min_sync_interval_ms,
        retry_sweep_seconds=settings.retry_sweep_seconds,
    )

    return Services(
        engine=engine,
        drafts=drafts,
        queue=queue,
        settings_store=settings_store,
        processor=processor,
        orchestrator=orchestrator,
        scheduler=scheduler,
        connectivity=connectivity,
    )


def stage_timeout_seconds(settings: Settings) -> float:
    """
    Outer per-stage watchdog. Never shorter than the clients' own worst case
    (every attempt timing out, backoff sleeps, one extraction fallback).
    """
    budget = retry_budget_seconds(
        settings.client_max_retries,
        settings.request_timeout_seconds,
        settings.client_retry_initial_delay_ms,
        settings.client_retry_max_delay_ms,
        extra_requests=1,
    ) + STAGE_TIMEOUT_MARGIN_SECONDS
    if settings.stage_timeout_seconds is None:
        return budget
    if settings.stage_timeout_seconds < budget:
        logger.warning(
            "stage_timeout_seconds=%s is below the client retry budget; using %.0fs",
            settings.stage_timeout_seconds, budget,
        )
        return budget
    return settings.stage_timeout_seconds


async def start_services(services: Services, settings: Optional[Settings] = None) -> None:
    """Start the scheduler, connectivity polling and auto-sync, then drain once."""
    settings = settings or get_settings()
    services.scheduler.start()
    if hasattr(services.connectivity, "start_polling"):
        services.connectivity.start_polling(
            services.scheduler, interval_seconds=settings.connectivity_poll_seconds
        )
    services.orchestrator.start_auto_sync()
    await services.orchestrator.initialize()


def stop_services(services: Services) -> None:
    services.orchestrator.dispose()
    if services.scheduler.running:
        services.scheduler.shutdown(wait=False)
