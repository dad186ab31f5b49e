"""
FastAPI application entry point for the fieldops API.

Configures logging, CORS and the database pool lifecycle, and mounts the
resource routers from ``fieldops.api``.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fieldops import __version__
from fieldops.api import api_router
from fieldops.core.config import get_settings
from fieldops.core.database import close_db, init_db
from fieldops.core.dependencies import DBSessionDep

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the database pool on startup and close it on shutdown."""
    logger.info("fieldops API starting")
    try:
        await init_db()
        logger.info("Database connection pool initialized")
    except Exception as e:
        # Health and docs stay reachable; queries retry the pool lazily.
        logger.error(f"Failed to initialize database: {e}")

    yield

    logger.info("fieldops API shutting down")
    try:
        await close_db()
        logger.info("Database connection pool closed")
    except Exception as e:
        logger.error(f"Error closing database pool: {e}")


app = FastAPI(
    title="fieldops API",
    version=__version__,
    description=(
        "Field operations backend: check-ins, claims, competitors, journals, "
        "leads and reporting."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


@app.get("/health/db")
async def database_health(conn: DBSessionDep):
    """Readiness check: round-trips a trivial query through the pool."""
    await conn.fetchval("SELECT 1")
    return {"status": "healthy", "database": "connected"}


@app.get("/")
async def root():
    return {
        "name": "fieldops API",
        "version": __version__,
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "fieldops.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
