import logging
import os
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tourwatch.config import settings

# ─── Logging setup (file + console) ───
_LOG_DIR = Path(os.environ.get("LOG_DIR", Path(__file__).resolve().parent.parent / "logs"))
_LOG_DIR.mkdir(parents=True, exist_ok=True)

_log_level = getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO)

logging.basicConfig(
    level=_log_level,
    format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[
        logging.StreamHandler(),
        RotatingFileHandler(
            _LOG_DIR / "tourwatch.log",
            maxBytes=10 * 1024 * 1024,  # 10 MB
            backupCount=5,
            encoding="utf-8",
        ),
    ],
)

# Quiet noisy libraries
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("apscheduler").setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

from tourwatch.routers import monitored_searches

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: launch the monitoring scheduler
    scheduler = None
    if settings.scheduler_enabled:
        try:
            from apscheduler.schedulers.asyncio import AsyncIOScheduler
            from apscheduler.triggers.cron import CronTrigger

            scheduler = AsyncIOScheduler()

            async def _run_monitor_tick():
                from tourwatch.services.monitor_scheduler import monitor_scheduler
                summary = await monitor_scheduler.tick()
                if summary.notifications:
                    logger.info(f"Monitor tick: {summary.notifications} notifications decided")

            scheduler.add_job(
                _run_monitor_tick,
                CronTrigger.from_crontab(settings.monitor_schedule, timezone=settings.monitor_timezone),
                id="monitor_tick",
                max_instances=1,
                coalesce=True,
            )

            scheduler.start()
            logger.info(f"Monitoring scheduler started ({settings.monitor_schedule}, {settings.monitor_timezone})")
        except Exception as e:
            logger.error(f"Scheduler failed to start: {e}")
            scheduler = None

    yield

    # Shutdown
    if scheduler:
        scheduler.shutdown(wait=False)
        logger.info("Monitoring scheduler stopped")

    from tourwatch.services.cache_service import offer_cache
    from tourwatch.services.dispatcher import dispatcher
    from tourwatch.services.provider_client import provider_client

    await provider_client.close()
    await offer_cache.close()
    channel_close = getattr(dispatcher.channel, "close", None)
    if channel_close:
        await channel_close()


app = FastAPI(
    title="TourWatch",
    description="Background monitoring and notifications for saved tour searches",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(monitored_searches.router, prefix="/api/monitored-searches", tags=["monitored-searches"])


@app.get("/api/health")
async def health_check():
    return {"status": "ok", "service": "tourwatch"}
