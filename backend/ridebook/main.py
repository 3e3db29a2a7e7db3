import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api import api_booking, api_invoice
from .core.config import settings
from .core.observability import setup_logging
from .database import Base, SessionLocal, engine
from .services.scheduled_jobs import ScheduledJobRunner, start_scheduled_jobs
from .utils.errors import DomainException
from .utils.notification_dispatcher import NotificationDispatcher
from .utils.notifications import Notifier
from .utils.settings_cache import SettingsCache

# Configure logging before creating any loggers
setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Ridebook API")

app.state.session_factory = SessionLocal
app.state.notifier = Notifier()
app.state.dispatcher = NotificationDispatcher()
app.state.settings_cache = SettingsCache(ttl_seconds=settings.SETTINGS_CACHE_TTL_SECONDS)
app.state.job_runner = None

api_prefix = settings.API_V1_STR
app.include_router(api_booking.router, prefix=api_prefix)
app.include_router(api_invoice.router, prefix=api_prefix)


@app.exception_handler(DomainException)
async def domain_exception_handler(request: Request, exc: DomainException):
    if exc.status_code >= 500:
        logger.error("%s at %s: %s", exc.code, request.url.path, exc.message)
    else:
        logger.warning("%s at %s: %s", exc.code, request.url.path, exc.message)
    http_exc = exc.to_http_exception()
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})


@app.on_event("startup")
def create_tables() -> None:
    Base.metadata.create_all(bind=engine)


@app.on_event("startup")
async def start_background_tasks() -> None:
    """Launch the auto-cancel and reminder scans."""
    if not settings.SCHEDULED_JOBS_ENABLED:
        logger.info("Scheduled jobs disabled via SCHEDULED_JOBS_ENABLED")
        return
    runner = ScheduledJobRunner(session_factory=app.state.session_factory, notifier=app.state.notifier)
    app.state.job_runner = start_scheduled_jobs(runner)


@app.on_event("shutdown")
async def stop_background_tasks() -> None:
    runner = app.state.job_runner
    if runner is not None:
        await runner.stop()
    app.state.dispatcher.shutdown(wait=False)
