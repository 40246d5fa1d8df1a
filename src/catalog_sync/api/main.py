"""FastAPI application factory."""
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from sqlmodel import SQLModel

from catalog_sync.api.deps import require_operator
from catalog_sync.api.routes import dlq, sync as sync_routes, webhooks
from catalog_sync.db.engine import get_engine


def create_app() -> FastAPI:
    """Build and return the FastAPI app."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Create tables on startup (idempotent); honours a test engine override
        engine = app.dependency_overrides.get(get_engine, get_engine)()
        SQLModel.metadata.create_all(engine)
        yield

    app = FastAPI(
        title="Catalog Sync API",
        description="Marketplace webhooks, DLQ management and sync status",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
    app.include_router(
        dlq.router,
        prefix="/dlq",
        tags=["dlq"],
        dependencies=[Depends(require_operator)],
    )
    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])

    return app


# Module-level app instance for uvicorn
app = create_app()
