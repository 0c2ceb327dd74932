from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from parkwatch.api import execute, executions, health, results, searches, webhooks
from parkwatch.config import get_settings
from parkwatch.database import init_db
from parkwatch.scheduler import start_scheduler, stop_scheduler
from parkwatch.services.runtime import get_notifier, shutdown_runtime

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting parkwatch")

    init_db()
    # Misconfigured notification backends must stop startup
    get_notifier()

    if settings.scheduler_enabled:
        start_scheduler()
    else:
        logger.info("Scheduler disabled, relying on webhook / CLI triggers")

    yield

    logger.info("Shutting down parkwatch")
    try:
        stop_scheduler()
        await shutdown_runtime()
    except Exception as e:
        logger.error(f"Shutdown error: {e}")


app = FastAPI(
    title="parkwatch",
    description="Holiday Park availability monitor",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)

app.include_router(health.router, tags=["health"])
app.include_router(searches.router, prefix="/api/searches", tags=["searches"])
app.include_router(results.router, prefix="/api/searches", tags=["results"])
app.include_router(execute.router, prefix="/api/execute", tags=["execute"])
app.include_router(executions.router, prefix="/api/executions", tags=["executions"])
app.include_router(webhooks.router, prefix="/api/webhooks", tags=["webhooks"])


@app.get("/ping")
async def ping():
    """Simple ping endpoint for health checks."""
    return {"status": "ok"}
