"""
League Registration API Server

FastAPI server exposing team-selection reconciliation, fee lookup and
discount code endpoints.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import os
import uvicorn
from slowapi import _rate_limit_exceeded_handler  # type: ignore
from slowapi.errors import RateLimitExceeded  # type: ignore

from leaguereg.api.routes import router, limiter as routes_limiter
from leaguereg.database import db
from leaguereg.services import settings_service

# Set up logging
# Allow log level to be configured via environment variable (default: INFO)
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, log_level, logging.INFO)
logging.basicConfig(
    level=numeric_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup and shutdown events."""
    logger.info("Starting up League Registration API...")

    # Fallback for tables that are not in migrations yet
    try:
        await db.init_database()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    # A log_level row in the settings table overrides the environment
    try:
        async with db.AsyncSessionLocal() as session:
            log_level_setting = await settings_service.get_setting(session, "log_level")
        if log_level_setting:
            log_level_name = log_level_setting.upper()
            logging.getLogger().setLevel(getattr(logging, log_level_name, logging.INFO))
            logger.info(f"Log level set from database: {log_level_name}")
        else:
            logger.info(f"Log level set from environment: {log_level}")
    except Exception as e:
        logger.warning(f"Could not load log level from database, using environment: {e}")

    yield  # App is running

    logger.info("Shutting down League Registration API...")
    await db.engine.dispose()


app = FastAPI(
    title="League Registration API",
    description="Season registration reconciliation and fee resolution",
    version="1.0.0",
    lifespan=lifespan,
)

# Setup rate limiter
app.state.limiter = routes_limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add CORS middleware; origins configured via ALLOWED_ORIGINS env var
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
