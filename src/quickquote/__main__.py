"""
Main entrypoint: runs the sync worker, the HTTP API, or one-off queue commands.

The API process owns its own services (see quickquote.api.main), so run
either the worker or the API against a database, or both: items are claimed
atomically.

Usage:
    python -m quickquote             # worker: scheduler + auto-sync until Ctrl+C
    python -m quickquote api         # FastAPI under uvicorn (API_HOST / API_PORT)
    python -m quickquote process     # drain the queue once and exit
    python -m quickquote status      # print queue counts
    python -m quickquote retry       # make failed items runnable again
    python -m quickquote clear       # delete every queue item

Installed as the ``quickquote`` console script with the same commands.
"""
import asyncio
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


async def _run_worker() -> None:
    from quickquote.config import get_settings
    from quickquote.services import build_services, start_services, stop_services

    settings = get_settings()
    services = build_services(settings)

    def log_status(status) -> None:
        logger.info("Sync status: %s", status.state.value)

    services.orchestrator.add_listener(log_status)
    await start_services(services, settings)
    logger.info("Worker is running. Press Ctrl+C to stop.")

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
        logger.info("Shutting down...")
    finally:
        stop_services(services)
        logger.info("Goodbye.")


async def _process_once() -> int:
    from quickquote.services import build_services

    services = build_services()
    services.processor.recover_interrupted()
    result = await services.processor.process_all()
    for err in result.errors:
        logger.warning("%s: %s", err.id, err.error)
    print(f"processed={result.processed} failed={result.failed} total={result.total}")
    return 1 if result.failed else 0


def _run_api() -> int:
    import uvicorn

    from quickquote.config import get_settings

    settings = get_settings()
    logger.info("Starting API on %s:%d", settings.api_host, settings.api_port)
    uvicorn.run("quickquote.api.main:app", host=settings.api_host, port=settings.api_port)
    return 0


def _run_command(command: str) -> int:
    from quickquote.services import build_services

    services = build_services()
    if command == "status":
        status = services.processor.get_queue_status()
        print(
            f"pending={status.pending} processing={status.processing} "
            f"failed={status.failed} total={status.total}"
        )
    elif command == "retry":
        print(f"reset={services.processor.retry_failed_items()}")
    elif command == "clear":
        print(f"deleted={services.queue.purge_all()}")
    else:
        print(__doc__)
        return 2
    return 0


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    command = argv[0] if argv else "worker"

    if command == "worker":
        asyncio.run(_run_worker())
        return 0
    if command == "process":
        return asyncio.run(_process_once())
    if command == "api":
        return _run_api()
    return _run_command(command)


if __name__ == "__main__":
    sys.exit(main())
