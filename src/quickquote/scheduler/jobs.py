"""
APScheduler jobs for background maintenance.

The nightly retention job releases audio for transcribed drafts older than
the user's audio_retention_days setting (0 disables it). Sync jobs
(debounce, retry sweep, connectivity polling) are registered on the same
scheduler by the sync layer.
"""
import logging
from pathlib import Path

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from quickquote.config import get_settings

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000


def build_scheduler(engine) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        engine: SQLAlchemy engine passed to the retention job.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _audio_retention,
        trigger="cron",
        hour=settings.audio_retention_hour,
        minute=0,
        id="audio_retention",
        replace_existing=True,
        kwargs={"engine": engine},
    )

    return scheduler


async def _audio_retention(engine) -> None:
    """
    Nightly job: release and delete audio past the retention window.

    Idempotent; failures are logged so the scheduler stays alive.
    """
    from quickquote.models.clock import now_ms
    from quickquote.store.drafts import DraftStore
    from quickquote.store.settings import SettingsStore

    settings = get_settings()

    try:
        days = int(SettingsStore(engine, settings).get("audio_retention_days") or 0)
        if days <= 0:
            logger.info("Audio retention disabled")
            return

        released = DraftStore(engine).clear_old_audio(now_ms() - days * DAY_MS)
        for audio_path in released:
            try:
                Path(audio_path).unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Could not delete %s: %s", audio_path, exc)

        logger.info("Audio retention released %d recordings", len(released))

    except Exception as exc:
        logger.error("Audio retention failed: %s", exc)
