import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from matviews import __version__
from matviews.api import health, v1
from matviews.jobs.adapter import get_job_adapter
from matviews.logging_config import setup_logging

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start/stop the job backend with the app."""
    adapter = get_job_adapter()
    logger.info(f"Starting job adapter: {adapter.name}")
    adapter.start()
    yield
    logger.info(f"Stopping job adapter: {adapter.name}")
    adapter.shutdown()


app = FastAPI(
    title="mat-views",
    description="PostgreSQL materialized view lifecycle",
    version=__version__,
    lifespan=lifespan
)

app.include_router(health.router)
app.include_router(v1.router, prefix="/api/v1")
