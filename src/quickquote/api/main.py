"""FastAPI application factory."""
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI

from quickquote.api.routes import drafts, queue as queue_routes, sync as sync_routes
from quickquote.services import Services, build_services, start_services, stop_services


def create_app(services_factory: Optional[Callable[[], Services]] = None) -> FastAPI:
    """Build and return the FastAPI app."""

    factory = services_factory or build_services

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services = factory()
        app.state.services = services
        await start_services(services)
        yield
        stop_services(services)

    app = FastAPI(
        title="QuickQuote API",
        description="Voice note to invoice processing queue",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(drafts.router, prefix="/drafts", tags=["drafts"])
    app.include_router(queue_routes.router, prefix="/queue", tags=["queue"])
    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])

    return app


# Module-level app instance for uvicorn
app = create_app()
