"""
FastAPI Application: entry point.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from radar import __version__
from radar.config import get_capabilities
from radar.database import close_db, init_db
from radar.routes import router
from radar.routes.jobs import router as jobs_router
from radar.routes.projects import router as projects_router
from radar.services.background import background_tasks

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown hook."""
    logger.info("Starting Performance Radar API v%s", __version__)
    await init_db()
    logger.info("Database ready")

    capabilities = get_capabilities()
    logger.info(
        "Capabilities: queue=%s signatures=%s email=%s ai=%s",
        capabilities.queue_enabled,
        capabilities.verify_signatures,
        capabilities.email_enabled,
        capabilities.ai_enabled,
    )
    if not capabilities.cron_secret:
        logger.warning("CRON_SECRET not set: cron trigger is unauthenticated")

    yield

    # Shutdown
    if background_tasks.pending:
        logger.info("Waiting for %d background task(s)", background_tasks.pending)
    await background_tasks.drain()
    await close_db()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Performance Radar API",
    description="Scheduled Core Web Vitals audits with threshold alerts and AI action plans.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api/v1")
app.include_router(projects_router, prefix="/api/v1")
app.include_router(jobs_router, prefix="/api")


@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "Performance Radar API",
        "version": __version__,
        "docs": "/docs",
    }
