"""
Triathlon Integrations API

FastAPI application that connects athletes' fitness platforms and ingests
their workouts and wellness data.
"""

from contextlib import asynccontextmanager
import logging
import sys

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.db.session import init_db, AsyncSessionLocal
from app.api.v1.router import api_router
from app.features.integrations import SyncCooldown, WebhookQueue, wait_for_backfills
from app.features.integrations.crypto import check_encryption_key


# === Logging Setup ===
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
    ]
)
logger = logging.getLogger(__name__)


# === Lifespan ===
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    logger.info("Starting Triathlon Integrations API...")
    check_encryption_key()

    await init_db()
    logger.info("Database initialized")

    app.state.session_factory = AsyncSessionLocal
    app.state.sync_cooldown = SyncCooldown(settings.sync_cooldown_seconds)
    app.state.webhook_queue = WebhookQueue()
    await app.state.webhook_queue.start(AsyncSessionLocal)

    yield

    # Shutdown
    await app.state.webhook_queue.stop()
    await wait_for_backfills()
    logger.info("Shutting down...")


# === App Creation ===
app = FastAPI(
    title="Triathlon Integrations API",
    description="Strava, Garmin, Polar and Wahoo integrations with webhook ingestion",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


# === Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# === Routes ===
app.include_router(api_router, prefix="/api/v1")


# === Health Check ===
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "0.1.0"}
