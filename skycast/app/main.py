"""
FastAPI application entry point.

Run with:
    uvicorn skycast.app.main:app --reload --port 3000

Startup wiring (lifespan):

    engine ─► init_db                       scheduler_jobs, weather_history
    httpx.AsyncClient (shared) ─► OpenWeatherClient ─► Geocoder (geo cache)
    RateBudget (one per process) ─► HistoryService, BackfillEngine
    DeviceService ─► Expo token provider ─► NotificationDispatcher
    JobStore + JobExecutor ─► SchedulerService ─► CronScheduler
    system jobs: history backfill (cron), geo-cache sweep, history retention

Everything built here is stored on ``app.state`` for the routers.
"""

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from skycast.app.core.budget import RateBudget
from skycast.app.core.cache import create_geo_cache
from skycast.app.core.config import settings
from skycast.app.core.database import close_db, init_db, make_engine, make_session_factory
from skycast.app.core.errors import register_error_handlers
from skycast.app.core.health import HealthStatus, run_health_check
from skycast.app.core.logging_config import get_logger, setup_logging
from skycast.app.core.middleware import RequestLoggingMiddleware

# ── Services ──
from skycast.app.backfill.runner import BackfillEngine, schedule_backfill_job
from skycast.app.devices.service import DeviceService
from skycast.app.devices.storage import DeviceStore
from skycast.app.forecast.service import ForecastService, Geocoder, OpenWeatherClient
from skycast.app.history.repository import HistoryRepository
from skycast.app.history.service import HistoryService
from skycast.app.notifications.dispatcher import build_dispatcher
from skycast.app.scheduler.executor import JobExecutor
from skycast.app.scheduler.service import SchedulerService
from skycast.app.scheduler.storage import create_job_store

# ── API routers ──
from skycast.app.api.v1.devices import router as devices_router
from skycast.app.api.v1.history import router as history_router
from skycast.app.api.v1.scheduler import router as scheduler_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


def register_system_jobs(
    scheduler_service: SchedulerService,
    geocoder: Geocoder,
    history_service: HistoryService,
    backfill_engine: BackfillEngine,
) -> None:
    cron = scheduler_service.cron

    async def sweep_geo_cache() -> None:
        evicted = geocoder.cache.cleanup()
        if evicted:
            logger.debug("Geocoding cache sweep evicted %d entries", evicted)

    cron.add_system_job(
        "system:geo-cache-sweep", sweep_geo_cache,
        interval_seconds=settings.CACHE_CLEANUP_INTERVAL_SECONDS,
    )

    if settings.HISTORY_RETENTION_DAYS > 0:
        async def enforce_retention() -> None:
            await history_service.cleanup_old(settings.HISTORY_RETENTION_DAYS)

        cron.add_system_job(
            "system:history-retention", enforce_retention, cron="0 30 4 * * *",
        )

    if settings.HISTORY_BACKFILL_ENABLED:
        schedule_backfill_job(scheduler_service, backfill_engine)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build services, start the scheduler, tear everything down on exit."""
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    if not settings.OPENWEATHERMAP_API_KEY:
        logger.warning("OPENWEATHERMAP_API_KEY is not set; upstream calls will fail")

    engine = make_engine()
    await init_db(engine)
    session_factory = make_session_factory(engine)

    client = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)
    budget = RateBudget(settings.API_DAILY_CALL_LIMIT)

    api = OpenWeatherClient(client=client)
    geocoder = Geocoder(api, create_geo_cache())
    forecast_service = ForecastService(geocoder, api)

    device_service = DeviceService(DeviceStore(settings.DEVICE_STORAGE_PATH), client)
    await device_service.init()
    dispatcher = build_dispatcher(client, device_service.tokens_for_city)

    job_store = create_job_store(
        settings.JOB_STORE_BACKEND,
        file_path=settings.JOB_STORAGE_PATH,
        session_factory=session_factory,
    )
    scheduler_service = SchedulerService(job_store, JobExecutor(forecast_service, dispatcher))
    await scheduler_service.init()
    if settings.SCHEDULER_JOBS_FILE:
        await scheduler_service.load_jobs_file(settings.SCHEDULER_JOBS_FILE)

    history_service = HistoryService(geocoder, api, HistoryRepository(session_factory), budget)
    backfill_engine = BackfillEngine(history_service, device_service, scheduler_service, budget)
    register_system_jobs(scheduler_service, geocoder, history_service, backfill_engine)

    app.state.engine = engine
    app.state.budget = budget
    app.state.dispatcher = dispatcher
    app.state.device_service = device_service
    app.state.scheduler_service = scheduler_service
    app.state.history_service = history_service
    app.state.backfill_engine = backfill_engine

    if settings.SCHEDULER_ENABLED:
        scheduler_service.start()
    else:
        logger.info("Scheduler disabled; jobs are stored but will not fire")

    yield

    logger.info("Shutting down %s", settings.APP_NAME)
    scheduler_service.shutdown()
    await client.aclose()
    await close_db(engine)


# ── Create application ──

def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Scheduled weather forecasts with multi-backend push notifications "
            "(Expo, ntfy, Gotify) and budget-gated weather history backfill."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # ── Middleware stack (outermost first) ──
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(RequestLoggingMiddleware)

    register_error_handlers(application)

    application.include_router(scheduler_router)
    application.include_router(devices_router)
    application.include_router(history_router)

    # ── Root & health endpoints ──

    @application.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "modules": ["scheduler", "notifications", "devices", "history", "backfill"],
            "docs": "/docs",
        }

    @application.get("/health", tags=["health"])
    async def health_check():
        """Deep health probe — checks all subsystems."""
        report = await run_health_check(application.state)
        return report.to_dict()

    @application.get("/health/live", tags=["health"])
    async def liveness():
        return {"status": "alive"}

    @application.get("/health/ready", tags=["health"])
    async def readiness():
        report = await run_health_check(application.state)
        if report.status == HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return application


app = create_app()
