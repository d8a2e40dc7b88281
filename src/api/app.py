"""FastAPI application factory and uvicorn entry point."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.calendar_webhook import router as calendar_router
from calendar_sync.notifications import CalendarSyncRunner
from config import Settings, settings as default_settings
from observability import configure_logging
from services.database import check_connection


def create_app(
    *,
    settings: Settings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | Callable[[], AsyncSession] | None = None,
    calendar_sync_runner: CalendarSyncRunner | None = None,
    init_database: bool | None = None,
) -> FastAPI:
    """Create the FastAPI app with its collaborators attached to ``app.state``.

    Tables are created on startup when the app owns its database, that is
    when no ``session_factory`` is injected. Pass ``init_database`` to
    override.
    """
    active_settings = settings or default_settings
    if init_database is None:
        init_database = session_factory is None
    if session_factory is None:
        from services.database import async_session_factory

        session_factory = async_session_factory

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        if init_database:
            from services.database import init_db

            await init_db()
        yield

    app = FastAPI(title="stonegate-ops", version="0.1.0", lifespan=lifespan)
    app.state.settings = active_settings
    app.state.session_factory = session_factory
    app.state.calendar_sync_runner = calendar_sync_runner
    app.include_router(calendar_router)

    @app.get("/health")
    async def health() -> JSONResponse:
        """Report liveness along with database reachability."""
        database_ok = await check_connection(app.state.session_factory)
        return JSONResponse(
            {"ok": database_ok, "database": database_ok},
            status_code=200 if database_ok else 503,
        )

    return app


def run(*, host: str = "0.0.0.0", port: int = 8000) -> None:
    """Configure logging and serve the app through uvicorn."""
    configure_logging(
        level=default_settings.log_level,
        json_output=default_settings.log_json,
        service="stonegate-ops",
        environment=default_settings.environment,
    )
    uvicorn.run(create_app(), host=host, port=port, log_level=default_settings.log_level.lower())


__all__ = ["create_app", "run"]
