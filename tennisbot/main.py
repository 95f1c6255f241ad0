"""Main FastAPI application for the tennis booking service."""
import asyncio
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from jinja2 import Environment, FileSystemLoader

from tennisbot.api.v1.endpoints import router as api_router, to_http_error
from tennisbot.core.config import get_settings
from tennisbot.core.exceptions import BookingServiceError
from tennisbot.core.logging_config import configure_logging
from tennisbot.db.backup import BackupManager
from tennisbot.db.migrate import MigrationManager
from tennisbot.db.repository import BookingStore
from tennisbot.db.session import Database
from tennisbot.services.booking import BookingOrchestrator
from tennisbot.services.calendar import CalendarService
from tennisbot.services.notifications import OperatorNotifier
from tennisbot.services.scheduler import ReconciliationScheduler

logger = logging.getLogger(__name__)

template_dir = os.path.join(os.path.dirname(__file__), 'templates')
jinja_env = Environment(loader=FileSystemLoader(template_dir))

VERSION = "1.0.0"


def create_app(settings=None, calendar=None, notifier=None) -> FastAPI:
    """Build the application; collaborators may be injected for tests."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        app_settings = settings or get_settings()
        configure_logging(app_settings.log_level, app_settings.log_json)
        logger.info(f"Timezone: {app_settings.timezone}")
        logger.info(f"Working hours: {app_settings.working_hours}")

        database = Database.from_settings(app_settings)
        MigrationManager(database).run_migrations()
        store = BookingStore(database, app_settings.tz)
        backups = BackupManager.from_settings(database, app_settings)
        app_calendar = calendar or CalendarService(app_settings, store)
        app_notifier = notifier or OperatorNotifier.from_settings(app_settings)

        app.state.settings = app_settings
        app.state.database = database
        app.state.store = store
        app.state.calendar = app_calendar
        app.state.orchestrator = BookingOrchestrator(app_settings, store, app_calendar, app_notifier)
        scheduler = ReconciliationScheduler(app_settings, store, backups, database)
        app.state.scheduler = scheduler
        if app_settings.scheduler_enabled:
            scheduler.start()

        yield

        await scheduler.stop()
        database.dispose()
        logger.info("Shutting down tennis booking service.")

    app = FastAPI(
        title="Tennis Booking Bot",
        description="Tennis session booking backed by Google Calendar",
        version=VERSION,
        lifespan=lifespan,
    )
    app.include_router(api_router, prefix="/api/v1")

    @app.get("/api/v1/healthz", tags=["Monitoring"])
    async def health_check(request: Request):
        """Health check endpoint for monitoring."""
        db_health = request.app.state.database.health_check()
        return {"status": "ok" if db_health["status"] == "healthy" else "degraded", "database": db_health}

    @app.get("/", response_class=HTMLResponse, tags=["Root"])
    async def root(request: Request):
        authorized = request.app.state.store.get_auth_tokens() is not None
        return HTMLResponse(content=jinja_env.get_template('status_page.html').render(authorized=authorized))

    @app.get("/auth", tags=["Auth"])
    async def auth(request: Request):
        return RedirectResponse(request.app.state.calendar.get_auth_url())

    @app.get("/auth/callback", response_class=HTMLResponse, tags=["Auth"])
    async def auth_callback(request: Request, code: str = None):
        if not code:
            raise HTTPException(status_code=400, detail="Authorization code not provided")
        try:
            await asyncio.to_thread(request.app.state.calendar.exchange_auth_code, code)
        except BookingServiceError as e:
            raise to_http_error(e)
        return HTMLResponse(content=jinja_env.get_template('auth_success.html').render())

    return app


app = create_app()
