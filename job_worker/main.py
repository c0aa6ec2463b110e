"""Main entry point for the job worker service."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from job_worker.config import get_settings
from job_worker.lib.json_logger import setup_logging
from job_worker.routes import health
from job_worker.routes.metrics import router as metrics_router

logger = logging.getLogger(__name__)

# Configure logging based on settings
settings = get_settings()
setup_logging(level=settings.log_level, log_format=settings.log_format)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the queue workers alongside the HTTP server."""
    from job_worker.workers import WorkerGroup

    group = WorkerGroup()
    await group.start()
    app.state.workers = group
    logger.info("Queue workers started")
    yield
    group.stop()
    await group.close()
    logger.info("Queue workers stopped")


app = FastAPI(
    title="Loam Logger Job Worker",
    description="Background jobs: provider sync, backfill, email and geocoding",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router, prefix="/health", tags=["Health"])
app.include_router(metrics_router, tags=["Metrics"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Loam Logger Job Worker",
        "version": "0.1.0",
        "status": "running"
    }


if __name__ == "__main__":
    uvicorn.run(
        "job_worker.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug
    )
